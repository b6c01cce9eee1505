# -*- coding: utf-8 -*-
"""
Configuration modules (plain dicts, secrets from .env).

pipeline_config covers parsing, extraction, upsert and external services;
retrieval_config covers hybrid retrieval and the reasoning pass.
"""
