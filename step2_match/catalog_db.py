#!/usr/bin/env python3
"""
Catalog Database - Snapshot the product catalog from PostgreSQL (read-only)

Connection settings come from config.DB_CONFIG, overridden by CATALOG_DB_HOST,
CATALOG_DB_PORT, CATALOG_DB_NAME, CATALOG_DB_USER and CATALOG_DB_PASSWORD
(environment first, then a .env file in the working directory).
"""

import os
import getpass
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import psycopg2
from psycopg2 import sql
from psycopg2.extras import RealDictCursor

from .catalog import CatalogLookupError, ProductCatalog

logger = logging.getLogger(__name__)

ENV_KEYS = {
    'host': 'CATALOG_DB_HOST',
    'port': 'CATALOG_DB_PORT',
    'database': 'CATALOG_DB_NAME',
    'user': 'CATALOG_DB_USER',
    'password': 'CATALOG_DB_PASSWORD',
}

CATALOG_QUERY = """
SELECT
    p.id::text AS entry_id,
    p.product_name,
    p.primary_sku,
    p.oem_number,
    p.wholesaler_sku,
    p.staples_sku,
    p.depot_sku,
    p.alt_oem_number,
    p.description,
    p.long_description,
    p.brand,
    p.model,
    p.category,
    p.color,
    p.page_yield,
    p.yield_class,
    p.family,
    p.compatibility_group,
    p.pack_quantity,
    p.uom,
    p.price,
    p.list_price,
    p.cost,
    p.active
FROM {table} p
WHERE p.active = true
ORDER BY p.id
"""


def _read_env_file(env_file: Path) -> Dict[str, str]:
    values = {}
    if not env_file.exists():
        return values
    with open(env_file, 'r') as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            key, value = line.split('=', 1)
            values[key.strip()] = value.strip()
    return values


def resolve_connection_settings(defaults: Dict[str, Any], env_file: Path = Path('.env')) -> Dict[str, Any]:
    """
    Merge DB_CONFIG defaults with environment variables and .env values

    Environment variables win over .env, which wins over defaults.
    """
    settings = dict(defaults)
    file_values = _read_env_file(env_file)
    for key, env_name in ENV_KEYS.items():
        value = os.environ.get(env_name) or file_values.get(env_name)
        if value:
            settings[key] = value
    settings['port'] = int(settings.get('port') or 5432)
    return settings


def connect_to_database(settings: Dict[str, Any]):
    """
    Connect to the catalog database using a read-only user

    Raises:
        CatalogLookupError: connection failed
    """
    password = settings.get('password') or getpass.getpass("Enter catalog database password: ")
    user = settings.get('user', '')
    logger.info(f"Connecting to catalog database as {user}@{settings.get('host')}:{settings.get('port')}/{settings.get('database')}")
    try:
        conn = psycopg2.connect(
            host=settings.get('host'),
            user=user,
            password=password,
            database=settings.get('database'),
            port=settings.get('port'),
        )
    except psycopg2.Error as e:
        raise CatalogLookupError(f"Failed to connect to catalog database: {e}") from e

    if 'read' not in user.lower():
        logger.warning(f"Using non-readonly user '{user}'. Consider a read-only user for catalog access.")
    else:
        logger.info(f"✓ Connected to catalog database as readonly user: {user}")
    return conn


def load_catalog_from_database(conn, table: str = 'catalog_products', **catalog_options) -> ProductCatalog:
    """
    Snapshot all active products into a ProductCatalog

    Args:
        conn: psycopg2 connection
        table: Product table name
        **catalog_options: Passed to ProductCatalog (namespaces, prefixes...)

    Raises:
        CatalogLookupError: query failed
    """
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(sql.SQL(CATALOG_QUERY).format(table=sql.Identifier(table)))
            rows = [dict(row) for row in cur.fetchall()]
    except psycopg2.Error as e:
        raise CatalogLookupError(f"Catalog query failed: {e}") from e

    logger.info(f"✓ Read {len(rows)} active products from {table}")
    return ProductCatalog.from_records(rows, **catalog_options)


def load_catalog(defaults: Dict[str, Any], table: str = 'catalog_products',
                 env_file: Optional[Path] = None, **catalog_options) -> ProductCatalog:
    """Connect, snapshot the catalog and close the connection"""
    settings = resolve_connection_settings(defaults, env_file or Path('.env'))
    conn = connect_to_database(settings)
    try:
        return load_catalog_from_database(conn, table, **catalog_options)
    finally:
        conn.close()
        logger.debug("Catalog database connection closed")
