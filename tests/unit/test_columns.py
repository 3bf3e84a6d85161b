from __future__ import annotations

import sqlalchemy as sa

from sqla_tablemapper import (
    ColumnInfo,
    ColumnMetadataProvider,
    InspectorColumnProvider,
    MetaDataColumnProvider,
)

from ..models import metadata


def test_providers_satisfy_protocol() -> None:
    engine = sa.create_engine("sqlite://")

    assert isinstance(InspectorColumnProvider(engine), ColumnMetadataProvider)
    assert isinstance(MetaDataColumnProvider(metadata), ColumnMetadataProvider)


def test_metadata_provider_schema_key() -> None:
    schema_metadata = sa.MetaData()
    sa.Table("ledger", schema_metadata, sa.Column("id", sa.Integer), schema="finance")
    provider = MetaDataColumnProvider(schema_metadata)

    assert provider.get_columns("ledger") == ()
    (info,) = provider.get_columns("ledger", schema="finance")
    assert info.name == "id"
    assert isinstance(info.sql_type, sa.Integer)


def test_column_info_of() -> None:
    assert isinstance(ColumnInfo.of("ID", sa.Integer).sql_type, sa.Integer)
    assert ColumnInfo.of("ID", None).sql_type is sa.types.NULLTYPE
    assert ColumnInfo.of("ID", None).name == "id"
