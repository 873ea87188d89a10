"""
Tests for store configuration and the store factory.
"""

import json

import pytest


class TestBackend:
    """Tests for backend name resolution."""

    def test_names_and_aliases(self):
        """Test canonical names, aliases and case are accepted."""
        from vecstore_core.config import Backend

        assert Backend.from_name("sqlite") is Backend.SQLITE
        assert Backend.from_name(" SQLite_Vec ") is Backend.SQLITE
        assert Backend.from_name("inmemory") is Backend.MEMORY
        assert Backend.from_name(Backend.QDRANT) is Backend.QDRANT
        assert Backend.PGVECTOR.is_remote
        assert not Backend.SQLITE.is_remote

    def test_unknown_backend(self):
        """Test unknown names list the supported backends."""
        from vecstore_core.config import Backend
        from vecstore_core.errors import NotFoundError

        with pytest.raises(NotFoundError) as exc:
            Backend.from_name("chroma")
        assert exc.value.name == "chroma"
        assert exc.value.available == ["sqlite", "memory", "pgvector", "qdrant"]
        assert "chroma" in str(exc.value)


class TestStoreConfig:
    """Tests for StoreConfig."""

    def test_builders(self):
        """Test builder helpers return new configs."""
        from vecstore_core.config import StoreConfig

        base = StoreConfig()
        config = base.with_sqlite("./v.db").with_option("table_name", "docs")
        assert config.path == "./v.db"
        assert config.options == {"table_name": "docs"}
        assert base.options == {}
        assert config.in_memory().path is None
        assert StoreConfig.memory().backend == "memory"

    def test_dict_round_trip(self):
        """Test to_dict and from_dict."""
        from vecstore_core.config import StoreConfig

        config = StoreConfig(backend="qdrant", connection_string="http://localhost:6333",
                             options={"table_name": "docs"})
        data = config.to_dict()
        assert data == {
            "backend": "qdrant",
            "connection_string": "http://localhost:6333",
            "options": {"table_name": "docs"},
        }
        assert StoreConfig.from_dict(data) == config

    def test_from_dict_rejects_bad_shapes(self):
        """Test malformed dicts raise ConfigurationError."""
        from vecstore_core.config import StoreConfig
        from vecstore_core.errors import ConfigurationError

        with pytest.raises(ConfigurationError):
            StoreConfig.from_dict(["sqlite"])
        with pytest.raises(ConfigurationError):
            StoreConfig.from_dict({"options": "table_name=docs"})

    def test_from_file(self, tmp_path):
        """Test loading a JSON config file."""
        from vecstore_core.config import StoreConfig
        from vecstore_core.errors import ConfigurationError

        path = tmp_path / "store.json"
        path.write_text(json.dumps({"backend": "sqlite", "path": "x.db"}))
        assert StoreConfig.from_file(path).path == "x.db"

        (tmp_path / "bad.json").write_text("{not json")
        with pytest.raises(ConfigurationError):
            StoreConfig.from_file(tmp_path / "bad.json")
        with pytest.raises(ConfigurationError):
            StoreConfig.from_file(tmp_path / "missing.json")

    def test_from_env(self):
        """Test reading a config from environment variables."""
        from vecstore_core.config import StoreConfig

        config = StoreConfig.from_env(environ={
            "VECSTORE_BACKEND": "sqlite",
            "VECSTORE_PATH": "/tmp/v.db",
            "VECSTORE_OPTION_TABLE_NAME": "docs",
            "VECSTORE_OPTION_FILTER_PUSHDOWN": "false",
            "OTHER": "ignored",
        })
        assert config.path == "/tmp/v.db"
        assert config.table_name() == "docs"
        assert config.filter_pushdown() is False
        assert StoreConfig.from_env(environ={}).backend == "sqlite"

    @pytest.mark.parametrize(
        "config",
        [
            {"backend": "qdrant"},
            {"backend": "qdrant", "connection_string": "localhost:6333"},
            {"backend": "pgvector", "connection_string": "   "},
            {"backend": "pgvector", "connection_string": "mysql://db"},
            {"backend": "sqlite", "options": {"table_name": "bad name"}},
            {"backend": "sqlite", "options": {"cache_size": "lots"}},
            {"backend": "sqlite", "options": {"filter_pushdown": "maybe"}},
        ],
    )
    def test_validate_rejects(self, config):
        """Test invalid parameters raise ConfigurationError."""
        from vecstore_core.config import StoreConfig
        from vecstore_core.errors import ConfigurationError

        with pytest.raises(ConfigurationError):
            StoreConfig.from_dict(config).validate()

    def test_validate_accepts(self):
        """Test valid remote parameters pass validation."""
        from vecstore_core.config import Backend, StoreConfig

        assert StoreConfig(backend="postgres",
                           connection_string="postgresql://u@h/db").validate() is Backend.PGVECTOR
        assert StoreConfig(backend="pgvector",
                           connection_string="host=h dbname=db").validate() is Backend.PGVECTOR
        assert StoreConfig(backend="qdrant",
                           connection_string="https://q:6333").validate() is Backend.QDRANT

    def test_unknown_options_logged(self, caplog):
        """Test unknown option keys are logged and ignored."""
        import logging
        from vecstore_core.config import StoreConfig

        with caplog.at_level(logging.WARNING, logger="vecstore_core.config"):
            StoreConfig.memory().with_option("colour", "blue").validate()
        assert "colour" in caplog.text


class TestCreateVectorStore:
    """Tests for create_vector_store and friends."""

    def test_sqlite_in_memory(self):
        """Test the default config builds an in-memory SQLite store."""
        from vecstore_core.vectorstore import SQLiteVectorStore, StoreConfig, create_vector_store

        result = create_vector_store(StoreConfig().in_memory())
        assert result.ok
        assert isinstance(result.store, SQLiteVectorStore)
        assert result.store.path == ":memory:"
        result.unwrap().close()

    def test_sqlite_file_with_options(self, tmp_path):
        """Test options reach the SQLite store."""
        from vecstore_core.vectorstore import StoreConfig, VectorRecord, create_vector_store

        config = (StoreConfig()
                  .with_sqlite(tmp_path / "v.db")
                  .with_option("table_name", "docs")
                  .with_option("cache_size", "2000")
                  .with_option("filter_pushdown", "false"))
        store = create_vector_store(config).unwrap()
        assert store.table_name == "docs"
        store.upsert(VectorRecord("a", [1.0], metadata={"k": "v"}))
        assert store.count({"k": "v"}) == 1
        store.close()
        assert (tmp_path / "v.db").exists()

    def test_memory_backend(self):
        """Test the pure-Python backend."""
        from vecstore_core.vectorstore import InMemoryVectorStore, StoreConfig, create_vector_store

        store = create_vector_store(StoreConfig.memory()).unwrap()
        assert isinstance(store, InMemoryVectorStore)

    def test_unknown_backend_result(self):
        """Test unknown backends produce NotFoundError without raising."""
        from vecstore_core.errors import NotFoundError
        from vecstore_core.vectorstore import StoreConfig, create_vector_store

        result = create_vector_store(StoreConfig(backend="chroma"))
        assert not result.ok
        assert result.store is None
        assert isinstance(result.error, NotFoundError)
        with pytest.raises(NotFoundError):
            result.unwrap()

    def test_remote_backend_without_constructor(self):
        """Test remote backends need a registered constructor."""
        from vecstore_core.errors import ConfigurationError
        from vecstore_core.vectorstore import create_vector_store_by_name

        result = create_vector_store_by_name("qdrant", connection_string="http://localhost:6333")
        assert isinstance(result.error, ConfigurationError)
        assert "register_backend" in str(result.error)

    def test_invalid_config_result(self):
        """Test validation errors are returned, not raised."""
        from vecstore_core.errors import ConfigurationError
        from vecstore_core.vectorstore import StoreConfig, create_vector_store

        result = create_vector_store(StoreConfig(backend="qdrant"))
        assert isinstance(result.error, ConfigurationError)
        assert isinstance(create_vector_store("sqlite").error, ConfigurationError)

    def test_registered_backend(self):
        """Test a registered constructor receives the config."""
        from vecstore_core.vectorstore import (
            InMemoryVectorStore,
            create_vector_store_by_name,
            list_backends,
            register_backend,
            unregister_backend,
        )

        seen = []

        def build(config):
            seen.append(config)
            return InMemoryVectorStore()

        register_backend("qdrant", build)
        try:
            assert "qdrant" in list_backends()
            result = create_vector_store_by_name(
                "qdrant", connection_string="http://localhost:6333", options={"table_name": "docs"}
            )
            assert result.ok
            assert seen[0].connection_string == "http://localhost:6333"
            assert seen[0].table_name() == "docs"
        finally:
            assert unregister_backend("qdrant")
        assert "qdrant" not in list_backends()

    def test_constructor_failure_is_wrapped(self):
        """Test unexpected constructor errors become StorageIOError."""
        from vecstore_core.errors import StorageIOError
        from vecstore_core.vectorstore import (
            create_vector_store_by_name,
            register_backend,
            unregister_backend,
        )

        def build(config):
            raise RuntimeError("connection refused")

        register_backend("pgvector", build)
        try:
            result = create_vector_store_by_name("pgvector", connection_string="postgresql://h/db")
        finally:
            unregister_backend("pgvector")
        assert isinstance(result.error, StorageIOError)
        assert isinstance(result.error.__cause__, RuntimeError)

    def test_constructor_returning_wrong_type(self):
        """Test constructors must return a VectorStore."""
        from unittest.mock import MagicMock
        from vecstore_core.errors import ConfigurationError
        from vecstore_core.vectorstore import (
            create_vector_store_by_name,
            register_backend,
            unregister_backend,
        )

        rejected = MagicMock()
        register_backend("pgvector", lambda config: rejected)
        try:
            result = create_vector_store_by_name("pgvector", connection_string="postgresql://h/db")
        finally:
            unregister_backend("pgvector")
        assert isinstance(result.error, ConfigurationError)
        rejected.close.assert_called_once()

    def test_register_invalid(self):
        """Test register_backend validates its arguments."""
        from vecstore_core.errors import NotFoundError, ValidationError
        from vecstore_core.vectorstore import register_backend

        with pytest.raises(NotFoundError):
            register_backend("chroma", lambda config: None)
        with pytest.raises(ValidationError):
            register_backend("qdrant", "not callable")

    def test_get_vector_store(self, tmp_path):
        """Test the raising convenience wrapper."""
        from vecstore_core.errors import NotFoundError
        from vecstore_core.vectorstore import get_vector_store

        store = get_vector_store("sqlite", path=tmp_path / "v.db", table_name="docs")
        assert store.table_name == "docs"
        store.close()

        assert get_vector_store("memory").count() == 0
        with pytest.raises(NotFoundError):
            get_vector_store("chroma")
