# -*- coding: utf-8 -*-
"""Atlas Vault — encrypted local store for clinical before/after photography."""

__version__ = "0.1.0"
