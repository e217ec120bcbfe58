"""
Unit tests for taleweaver configuration.
"""

import os

from taleweaver.config import Settings


class TestSettings:
    """Test the Settings configuration class"""

    def test_default_values(self):
        """Test that default values are set correctly"""
        settings = Settings(_env_file=None)
        assert settings.model_provider in ["openai", "generic"]
        assert isinstance(settings.model_name, str)
        assert isinstance(settings.debug, bool)
        assert settings.narrator_max_attempts == 3
        assert settings.history_window == 4
        assert settings.memory_cap == 20
        assert settings.semantic_threshold == 0.4
        assert settings.indexer_quiet_period == 10.0

    def test_environment_variables(self):
        """Test that environment variables override defaults"""
        original_env = os.environ.copy()

        try:
            os.environ["MODEL_NAME"] = "test-model"
            os.environ["DEBUG"] = "true"
            os.environ["NARRATOR_MAX_ATTEMPTS"] = "5"
            os.environ["EMBEDDING_PROVIDER"] = "none"

            settings = Settings(_env_file=None)
            assert settings.model_name == "test-model"
            assert settings.debug is True
            assert settings.narrator_max_attempts == 5
            assert settings.embedding_provider == "none"
        finally:
            os.environ.clear()
            os.environ.update(original_env)

    def test_case_insensitive_keys(self):
        original_env = os.environ.copy()
        try:
            os.environ["log_level"] = "DEBUG"
            assert Settings(_env_file=None).log_level == "DEBUG"
        finally:
            os.environ.clear()
            os.environ.update(original_env)
