"""Result normalization and ranking.

Raw hits from every source are adapted into one shape, ranked and annotated
with confidence labels, deep links and contact actions.

Contents
- ``formatter``: hit adapters and the ``ResultFormatter``
"""
