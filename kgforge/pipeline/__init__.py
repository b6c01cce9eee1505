# -*- coding: utf-8 -*-
"""
Ingestion pipeline package.

Contains ingestion_job (job handle and status) and ingestion_service (bounded
parse/extract/upsert worker pools chained by message passing).
"""
