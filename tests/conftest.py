import os
import sys

import pytest

# Project root and this directory on the path for flat-module imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from pipeline.schema_processor import ColumnDescriptor, TableSchema


@pytest.fixture
def shop_schema():
    """users + orders, as SchemaDescriber would return them."""
    return [
        TableSchema(
            table_name="users",
            columns=[
                ColumnDescriptor("id", "INT", nullable=False, key_role="PRI"),
                ColumnDescriptor("name", "VARCHAR(100)"),
            ],
            sample_row={"id": 1, "name": "Ada"},
        ),
        TableSchema(
            table_name="orders",
            columns=[
                ColumnDescriptor("id", "INT", nullable=False, key_role="PRI"),
                ColumnDescriptor("customer_id", "INT"),
                ColumnDescriptor("total", "DECIMAL(10,2)"),
            ],
            sample_row={"id": 1, "customer_id": 1, "total": 9.99},
        ),
    ]
