import datetime as _dt
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import TYPE_CHECKING, Annotated, Any, ClassVar, Optional, Self

from pydantic import AfterValidator, BaseModel, ConfigDict, PrivateAttr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.fields import FieldInfo

from .context import in_transaction
from .errors import RelationError, ValidationError
from .fields import FieldDefinition, FieldType, SchemaDefinition
from .repository import DataRepository

if TYPE_CHECKING:
    from .registry import ModelRegistry
    from .relations import RelationDefinition

Validator = Callable[[Any], Any] | FieldInfo

_PYTHON_TYPES: dict[FieldType, Any] = {
    FieldType.STRING: str,
    FieldType.INTEGER: int,
    FieldType.BIGINT: int,
    FieldType.FLOAT: float,
    FieldType.DECIMAL: Decimal,
    FieldType.BOOLEAN: bool,
    FieldType.TIMESTAMP: _dt.datetime,
    FieldType.DATE: _dt.date,
    FieldType.TIME: _dt.time,
    FieldType.JSON: Any,
}


def _issues(exc: PydanticValidationError) -> list[str]:
    """Flatten pydantic errors into ``"field: message"`` strings."""
    issues = []
    for error in exc.errors():
        loc = ".".join(str(part) for part in error["loc"]) or "__root__"
        issues.append(f"{loc}: {error['msg']}")
    return issues


def field_annotation(field: FieldDefinition, validator: Validator | None = None) -> tuple[Any, Any]:
    """
    Return the ``(annotation, default)`` pair used to declare a column on a model.

    Nullable columns and database-generated primary keys become ``Optional``
    with a ``None`` default; validators apply to the non-null value only.
    """
    annotation = _PYTHON_TYPES[field.type]
    if isinstance(validator, FieldInfo):
        if validator.metadata:
            annotation = Annotated[annotation, *validator.metadata]
    elif validator is not None:
        annotation = Annotated[annotation, AfterValidator(validator)]

    if field.has_default:
        default = field.default
    elif field.nullable or field.autoincrement:
        default = None
    else:
        default = ...

    if field.nullable or field.autoincrement or default is None:
        annotation = Optional[annotation]
    return annotation, default


class Model(BaseModel):
    """
    Base class for all Kiln models.

    Concrete models are generated by ``ModelRegistry.define`` from a schema;
    they inherit from Pydantic's BaseModel, so construction validates every
    column and raises ``kiln.ValidationError`` on failure. Persistence goes
    through the class's ``DataRepository`` and therefore through the ambient
    execution context.
    """

    model_config = ConfigDict(
        from_attributes=True,
        use_attribute_docstrings=True,
    )

    kiln_schema: ClassVar[SchemaDefinition] = {}
    table_name: ClassVar[str] = ""
    primary_key: ClassVar[str] = "id"
    repository: ClassVar[DataRepository]
    kiln_registry: ClassVar["ModelRegistry | None"] = None
    kiln_relations: ClassVar[dict[str, "RelationDefinition"]] = {}
    relation_loaders: ClassVar[dict[str, Callable[["Model"], Awaitable[Any]]]] = {}

    _original: dict[str, Any] = PrivateAttr(default_factory=dict)
    _persisted: bool = PrivateAttr(default=False)
    _pivot: dict[str, Any] | None = PrivateAttr(default=None)

    def __init__(self, attributes: dict[str, Any] | None = None, /, **data: Any):
        try:
            super().__init__(**{**(attributes or {}), **data})
        except PydanticValidationError as exc:
            raise ValidationError(_issues(exc)) from exc

    def model_post_init(self, __context: Any) -> None:
        self._original = self.get_attributes()

    @classmethod
    def hydrate(cls, row: dict[str, Any] | None) -> Self | None:
        """Build a clean, persisted instance from a database row."""
        if row is None:
            return None
        instance = cls(row)
        instance._persisted = True
        return instance

    @classmethod
    def validate_partial(cls, data: dict[str, Any]) -> dict[str, Any]:
        """
        Validate a subset of columns without building an instance.

        Returns:
            The validated values.

        Raises:
            ValidationError: If a value is invalid or names an unknown column.
        """
        issues: list[str] = []
        validated: dict[str, Any] = {}
        for name, value in data.items():
            field_info = cls.model_fields.get(name)
            if field_info is None:
                issues.append(f"{name}: Unknown field")
                continue
            try:
                validated[name] = TypeAdapter(field_info.rebuild_annotation()).validate_python(value)
            except PydanticValidationError as exc:
                issues.extend(
                    f"{name}: {error['msg']}" for error in exc.errors()
                )
        if issues:
            raise ValidationError(issues)
        return validated

    @classmethod
    async def find(cls, where: dict[str, Any] | None = None, **filters: Any) -> list[Self]:
        """
        Fetch every record matching the equality filters.

        Example:
            >>> active = await User.find(active=True)
        """
        rows = await cls.repository.find({**(where or {}), **filters})
        return [cls.hydrate(row) for row in rows]

    @classmethod
    async def find_by_id(cls, id: Any, id_field: str | None = None) -> Self | None:
        """
        Fetch a single record by primary key (or by ``id_field``).

        Lookups issued concurrently are coalesced into one query, and repeated
        lookups in the same context are served from the request cache.

        Example:
            >>> user = await User.find_by_id(1)
        """
        return cls.hydrate(await cls.repository.find_by_id(id, id_field))

    @classmethod
    async def find_by_ids(cls, ids: list[Any], id_field: str | None = None) -> list[Self | None]:
        rows = await cls.repository.find_by_ids(ids, id_field)
        return [cls.hydrate(row) for row in rows]

    @classmethod
    async def create(cls, data: dict[str, Any] | None = None, **fields: Any) -> Self | None:
        """
        Validate, insert and return a new record.

        Raises:
            ValidationError: Before anything is written, if the data is invalid.
        """
        instance = cls({**(data or {}), **fields})
        return cls.hydrate(await cls.repository.create(instance._insert_data()))

    @classmethod
    async def update(cls, id: Any, data: dict[str, Any], id_field: str | None = None) -> None:
        """Validate the supplied columns and update the record matching ``id``."""
        await cls.repository.update(id, cls.validate_partial(data), id_field)

    @classmethod
    async def delete(cls, id: Any, id_field: str | None = None) -> None:
        await cls.repository.delete(id, id_field)

    def _insert_data(self) -> dict[str, Any]:
        data = self.get_attributes()
        if data.get(self.primary_key) is None:
            data.pop(self.primary_key, None)
        return data

    def validate(self) -> list[str]:
        """Return the validation issues of the current values without raising."""
        try:
            type(self)(self.get_attributes())
        except ValidationError as exc:
            return list(exc.issues)
        return []

    def get_attributes(self) -> dict[str, Any]:
        """Return a shallow copy of the column values."""
        return {name: getattr(self, name) for name in type(self).model_fields}

    def set_attributes(self, data: dict[str, Any]) -> None:
        """Replace column values and mark the instance clean."""
        for name, value in data.items():
            setattr(self, name, value)
        self.reset_dirty()

    def get_changed_attributes(self) -> dict[str, Any]:
        """Return the columns whose values differ from the last clean state."""
        return {
            name: value
            for name, value in self.get_attributes().items()
            if self._original.get(name) != value
        }

    def is_dirty(self) -> bool:
        return bool(self.get_changed_attributes())

    def reset_dirty(self) -> None:
        self._original = self.get_attributes()

    async def save(self) -> None:
        """
        Persist the instance.

        New instances are inserted and pick up the generated primary key;
        instances loaded from the database update only their changed columns.
        """
        cls = type(self)
        if not self._persisted:
            row = await cls.repository.create(self._insert_data())
            if row is not None:
                for name, value in cls(row).get_attributes().items():
                    setattr(self, name, value)
            self._persisted = True
        else:
            changes = self.get_changed_attributes()
            if changes:
                pk_val = self._original.get(cls.primary_key)
                await cls.repository.update(pk_val, cls.validate_partial(changes))
        self.reset_dirty()

    async def refresh(self) -> None:
        """
        Reload the model instance's fields from the database.

        The cached copy of this record is evicted first, so the read always
        reaches the database.
        """
        cls = type(self)
        pk_val = getattr(self, cls.primary_key, None)
        if pk_val is None:
            raise RuntimeError("Cannot refresh a model without a primary key")

        # Transactional reads skip the shared cache, which only changes on commit
        if not in_transaction():
            cls.repository.evict(pk_val)
        fresh = await cls.find_by_id(pk_val)
        if fresh is None:
            raise RuntimeError(f"Instance not found in database: {cls.__name__}({pk_val})")

        self.__dict__.update(fresh.__dict__)
        self.reset_dirty()

    @property
    def pivot(self) -> dict[str, Any] | None:
        """Pivot columns of the link this record was loaded through, if any."""
        return self._pivot

    async def related(self, name: str) -> Any:
        """
        Load the relation ``name`` for this instance.

        Example:
            >>> posts = await user.related("posts")
        """
        loader = type(self).relation_loaders.get(name)
        if loader is None:
            raise RelationError(f"{type(self).__name__} has no relation named '{name}'")
        return await loader(self)
