import json
import logging as std_logging
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from harvest.main import create_store, parse_args
from harvest.storage.disk import DiskStore
from harvest.storage.memory import MemoryStore
from harvest.utils import config, logging
from harvest.utils.exceptions import ConfigError


class TestUtilities(unittest.TestCase):
    def setUp(self):
        """Set up test fixtures before each test method."""
        self.tmp = tempfile.TemporaryDirectory()
        self.config_path = Path(self.tmp.name) / "config.json"
        with open(self.config_path, 'w') as f:
            f.write('{"development": false, "server": {"port": 9000}, "database": {"password": "${HARVEST_DB_PASSWORD}"}}')

    def tearDown(self):
        """Clean up test fixtures after each test method."""
        self.tmp.cleanup()

    # Config Tests
    def test_load_config_success(self):
        """Test successful config loading with defaults filled in."""
        with patch.dict(os.environ, {"HARVEST_DB_PASSWORD": "secret"}):
            conf = config.load_config(self.config_path)

        self.assertFalse(conf["development"])
        self.assertEqual(conf["server"]["port"], 9000)
        self.assertEqual(conf["server"]["host"], "127.0.0.1")
        self.assertEqual(conf["database"]["password"], "secret")
        self.assertEqual(conf["heartbeat"]["ttl_seconds"], 600)

    def test_load_config_missing_env_var(self):
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ConfigError):
                config.load_config(self.config_path)

    def test_load_config_not_found(self):
        """Test config loading with non-existent file."""
        with self.assertRaises(ConfigError):
            config.load_config(Path(self.tmp.name) / "bad_config.json")

    def test_load_config_invalid_json(self):
        self.config_path.write_text("{")
        with self.assertRaises(ConfigError):
            config.load_config(self.config_path)

    def test_ensure_config_exists_writes_defaults(self):
        path = Path(self.tmp.name) / "nested" / "config.json"
        config.ensure_config_exists(path)

        with open(path) as f:
            self.assertEqual(json.load(f)["storage"]["backend"], "disk")

    def test_load_env_vars(self):
        env_path = Path(self.tmp.name) / ".env"
        env_path.write_text("# comment\nHARVEST_TEST_VAR=value\n")
        with patch.dict(os.environ, {}, clear=True):
            config.load_env_vars(env_path)
            self.assertEqual(os.environ["HARVEST_TEST_VAR"], "value")

    def test_get_config(self):
        """Test getting a config value by dotted key."""
        conf = {"heartbeat": {"ttl_seconds": 5}}
        self.assertEqual(config.get_config(conf, "heartbeat.ttl_seconds"), 5)
        self.assertEqual(config.get_config(conf, "heartbeat.missing", 1), 1)
        self.assertIsNone(config.get_config(conf, "server.port"))

    def test_create_store(self):
        conf = config.get_default_config()
        self.assertIsInstance(create_store(conf), DiskStore)

        conf["storage"]["backend"] = "memory"
        self.assertIsInstance(create_store(conf), MemoryStore)

        conf["storage"]["backend"] = "redis"
        with self.assertRaises(ConfigError):
            create_store(conf)

    def test_parse_args(self):
        self.assertEqual(parse_args(["flush"]).command, "flush")
        self.assertIsNone(parse_args([]).command)

    # Logging Tests
    def test_get_logger(self):
        """Test logger creation."""
        logger = logging.get_logger("test_logger")
        self.assertEqual(logger.name, "harvest.test_logger")
        self.assertEqual(logging.get_logger("__main__").name, "harvest.main")
        self.assertEqual(logging.get_logger("harvest.session").name, "harvest.session")

    def test_configure_logging(self):
        log_file = Path(self.tmp.name) / "logs" / "harvest.log"
        logging.configure_logging(development=True, log_file=log_file)
        app_logger = std_logging.getLogger("harvest")
        try:
            self.assertEqual(app_logger.level, std_logging.DEBUG)
            app_logger.debug("test debug")
            for handler in app_logger.handlers:
                handler.flush()
            self.assertIn("test debug", log_file.read_text())
        finally:
            for handler in app_logger.handlers:
                handler.close()
            app_logger.handlers.clear()
            app_logger.propagate = True
            std_logging.getLogger().handlers.clear()


if __name__ == '__main__':
    unittest.main()
