# -*- coding: utf-8 -*-
"""
Retrieval package.

Contains name_matcher (rapidfuzz seed lookup), hybrid_retriever (vector +
graph fusion) and answer_generator (grounded answers over retrieved context).
"""
