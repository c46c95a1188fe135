"""Compliance risk domain.

Risk scoring engine (``engine``), compliance item lifecycle (``lifecycle``),
score normalisation (``scoring``) and the document store adapter
(``documents``).
"""
