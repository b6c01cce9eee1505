# -*- coding: utf-8 -*-
"""
Document ingestion: format detection and transmutation of raw bytes into
canonical documents.
"""
