import pytest

from strataorm import Cardinality, ConfigurationError, LoadStrategy, SchemaRegistry


class Author:
    pass


class Book:
    pass


class Shelf:
    pass


AUTHOR = {
    "table": "author",
    "columns": [{"name": "id", "type": "INTEGER", "primaryKey": True}, {"name": "name"}],
    "relationships": [{"name": "books", "kind": "one_to_many", "targetTable": "book"}],
}
BOOK = {
    "columns": [
        {"name": "id", "type": "INTEGER", "primary_key": True},
        {"name": "author_id", "type": "INTEGER"},
        {"name": "version", "type": "INTEGER", "version": True},
    ],
    "relationships": [
        {"name": "author", "target_table": "author", "strategy": "selectin"},
        {"name": "shelves", "kind": "many-to-many", "target_table": "shelf"},
    ],
}
SHELF = {"columns": [{"name": "id", "type": "INTEGER", "primary_key": True}]}


def build():
    registry = SchemaRegistry()
    registry.map_all({Author: AUTHOR, Book: BOOK, Shelf: SHELF})
    return registry


def test_batch_registration_resolves_forward_references():
    registry = build()
    assert len(registry) == 3
    assert registry.descriptor_for(Book).table == "book"
    assert registry.descriptor_for_table("author").entity_type is Author
    assert registry.is_mapped(Book())


def test_relationship_defaults():
    registry = build()
    books = registry.descriptor_for(Author).relationship("books")
    assert books.kind is Cardinality.ONE_TO_MANY
    assert books.foreign_key == ("author_id",)
    assert books.fk_on_target and books.is_collection

    author = registry.descriptor_for(Book).relationship("author")
    assert author.kind is Cardinality.MANY_TO_ONE
    assert author.foreign_key == ("author_id",)
    assert author.default_strategy is LoadStrategy.BATCHED_IN

    shelves = registry.descriptor_for(Book).relationship("shelves")
    assert shelves.join_table == "book_shelf"
    assert shelves.foreign_key == ("book_id",)
    assert shelves.target_key == ("shelf_id",)


def test_descriptor_metadata():
    book = build().descriptor_for(Book)
    assert book.primary_key_names == ("id",)
    assert book.version_column.name == "version"
    assert book.generated_key.name == "id"
    assert isinstance(book.create_instance(), Book)


def test_unknown_target_table_rejects_whole_batch():
    registry = SchemaRegistry()
    broken = dict(BOOK, relationships=[{"name": "author", "target_table": "writer"}])
    with pytest.raises(ConfigurationError):
        registry.map_all({Shelf: SHELF, Book: broken})
    assert len(registry) == 0


@pytest.mark.parametrize(
    "config",
    [
        {"columns": []},
        {"columns": [{"name": "title"}]},
        {"columns": [{"name": "id", "primary_key": True}, {"name": "id"}]},
        {"columns": [{"name": "id", "primary_key": True, "version": True}]},
        {"columns": [{"name": "id", "primary_key": True}], "relationships": [{"name": "id", "target_table": "shelf"}]},
        {"columns": [{"name": "id", "primary_key": True}], "indexes": []},
        {"columns": [{"name": "id", "primary_key": True, "width": 3}]},
    ],
)
def test_invalid_mappings_raise(config):
    registry = SchemaRegistry()
    registry.map(Shelf, SHELF)
    with pytest.raises(ConfigurationError):
        registry.map(Book, config)


def test_foreign_key_must_exist_on_carrier():
    registry = SchemaRegistry()
    with pytest.raises(ConfigurationError):
        registry.map_all(
            {
                Shelf: SHELF,
                Book: {
                    "columns": [{"name": "id", "primary_key": True}],
                    "relationships": [{"name": "shelf", "target_table": "shelf"}],
                },
            }
        )


def test_unknown_strategy_is_a_configuration_error():
    registry = SchemaRegistry()
    registry.map(Shelf, SHELF)
    with pytest.raises(ConfigurationError):
        registry.map(
            Book,
            {
                "columns": [{"name": "id", "primary_key": True}, {"name": "shelf_id"}],
                "relationships": [{"name": "shelf", "target_table": "shelf", "strategy": "eventually"}],
            },
        )


def test_duplicate_registration_and_frozen_registry():
    registry = build()
    with pytest.raises(ConfigurationError):
        registry.map(Author, AUTHOR)
    registry.freeze()
    assert registry.frozen

    class Late:
        pass

    with pytest.raises(ConfigurationError):
        registry.map(Late, SHELF)


def test_unmapped_lookups_raise():
    registry = build()
    with pytest.raises(ConfigurationError):
        registry.descriptor_for(object)
    with pytest.raises(ConfigurationError):
        registry.descriptor_for_table("missing")
