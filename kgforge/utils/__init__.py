# -*- coding: utf-8 -*-
"""
Shared utilities: data model, ids, errors, logging, and the LLM/embedding
capabilities.
"""
