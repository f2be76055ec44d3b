#!/usr/bin/env python3
"""
Configuration file for the Supply Savings Engine
Business tunables (thresholds, keyword vocabularies, guardrails) live in rules/*.yaml;
this file holds paths, connections and runtime switches.
"""

import os

# Rule files (shared.yaml + 10_structure.yaml ... 60_quality.yaml)
# SAVINGS_RULES_DIR overrides the location, SAVINGS_HOT_RELOAD=1 re-reads changed files
RULES_DIR = os.environ.get('SAVINGS_RULES_DIR', 'rules')

# Catalog Database Connection (read-only user)
#
# Password Reading Priority (implemented in step2_match/catalog_db.py):
# 1. Environment variable: CATALOG_DB_PASSWORD (highest priority)
# 2. .env file in project root: CATALOG_DB_PASSWORD=your_password
# 3. Interactive prompt (fallback if neither above is set)
#
# CATALOG_DB_HOST, CATALOG_DB_PORT, CATALOG_DB_NAME and CATALOG_DB_USER override the rest
DB_CONFIG = {
    'host': 'localhost',
    'port': 5432,
    'database': 'catalog',
    'user': 'catalog_reader',
    'password': '',
}

CATALOG = {
    'table': 'catalog_products',        # Product table read by --catalog db
    'default_file': 'data/catalog.json',  # Used when --catalog is omitted
}

# Ollama (semantic search and AI fallback tiers, both off unless enabled)
# SAVINGS_SEMANTIC_SEARCH=1 enables embeddings, SAVINGS_AI_FALLBACK=1 enables the arbiter
OLLAMA = {
    'base_url': os.environ.get('OLLAMA_BASE_URL', 'http://localhost:11434'),
    'model_name': 'llama3.2:1b',        # Generation model for the AI arbiter
    'embedding_model': 'nomic-embed-text',
    'timeout': 10,                      # Seconds per request
    'max_retries': 3,                   # Attempts per call (delay doubles after each failure)
    'backoff': 2.0,                     # First retry delay in seconds
    'temperature': 0.1,                 # Low temperature for consistent answers
}

# Batch processing (chunk size and worker count default to rules/shared.yaml)
PROCESSING = {
    'chunk_size': None,
    'max_workers': None,
}

# File Paths
PATHS = {
    'checkpoint_folder': 'data/checkpoints/',  # One JSON checkpoint per job
    'output_folder': 'output/',                # <job_id>_summary.json
    'log_folder': 'logs/',                     # workflow.log
}

# Logging Settings
LOGGING = {
    'level': 'INFO',                   # DEBUG, INFO, WARNING, ERROR
    'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
}
