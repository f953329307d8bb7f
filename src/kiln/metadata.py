import sqlalchemy as sa

from .fields import FieldDefinition, FieldType, SchemaDefinition


def build_metadata(
    tables: dict[str, SchemaDefinition], metadata: sa.MetaData | None = None
) -> sa.MetaData:
    """
    Generate a SQLAlchemy MetaData object from Kiln schemas.

    Args:
        tables: Mapping of table name to schema.
        metadata: Existing metadata to add the tables to. Tables already
            present are left as they are.

    Returns:
        The populated metadata.
    """
    metadata = metadata if metadata is not None else sa.MetaData()
    for table_name, schema in tables.items():
        if table_name not in metadata.tables:
            _build_sa_table(metadata, table_name, schema)
    return metadata


def pivot_table(
    metadata: sa.MetaData,
    name: str,
    left: str,
    right: str,
    extra: SchemaDefinition | None = None,
) -> sa.Table:
    """
    Build (or return) the join table for a many-to-many relation.

    Args:
        metadata: Metadata the table belongs to.
        name: Table name.
        left: Column referencing the owning model.
        right: Column referencing the related model.
        extra: Additional columns stored on each link.
    """
    if name in metadata.tables:
        return metadata.tables[name]
    return sa.Table(
        name,
        metadata,
        sa.Column(left, sa.Integer(), nullable=False, index=True),
        sa.Column(right, sa.Integer(), nullable=False, index=True),
        *(_build_sa_column(col_name, field) for col_name, field in (extra or {}).items()),
    )


def _build_sa_table(
    metadata: sa.MetaData, table_name: str, schema: SchemaDefinition
) -> sa.Table:
    """Build a SQLAlchemy Table object from a Kiln schema."""
    columns = [_build_sa_column(col_name, field) for col_name, field in schema.items()]
    return sa.Table(table_name, metadata, *columns)


def _build_sa_column(col_name: str, field: FieldDefinition) -> sa.Column:
    kwargs = {
        "primary_key": field.primary_key,
        "nullable": field.nullable and not field.primary_key,
        "unique": field.unique,
        "index": field.index,
    }
    if field.primary_key:
        kwargs["autoincrement"] = field.autoincrement
    if field.has_default:
        kwargs["default"] = field.default
    return sa.Column(col_name, _map_to_sa_type(field), **kwargs)


def _map_to_sa_type(field: FieldDefinition) -> sa.types.TypeEngine:
    """Map a Kiln field type to a SQLAlchemy type."""
    kind = field.type
    if kind is FieldType.STRING:
        return sa.String()
    if kind is FieldType.INTEGER:
        return sa.Integer()
    if kind is FieldType.BIGINT:
        if field.options.get("mode") == "str":
            return sa.String(32)
        # SQLite only autoincrements INTEGER PRIMARY KEY columns
        return sa.BigInteger().with_variant(sa.Integer(), "sqlite")
    if kind is FieldType.FLOAT:
        return sa.Float()
    if kind is FieldType.DECIMAL:
        return sa.Numeric(field.options.get("precision"), field.options.get("scale"))
    if kind is FieldType.BOOLEAN:
        return sa.Boolean()
    if kind is FieldType.TIMESTAMP:
        return sa.DateTime()
    if kind is FieldType.DATE:
        return sa.Date()
    if kind is FieldType.TIME:
        return sa.Time()
    if kind is FieldType.JSON:
        return sa.JSON()
    return sa.String()  # Fallback
