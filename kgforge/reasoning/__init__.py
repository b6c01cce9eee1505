# -*- coding: utf-8 -*-
"""
Reasoning package.

Contains inference_engine (structural candidate pairs labeled by the LLM and
written back as Inferred relationships).
"""
