import attrs
import pytest

from clkit.config import ContextConfig


class TestContextConfig:
    """Validation and update behaviour of ContextConfig."""

    def test_defaults(self):
        config = ContextConfig()
        assert config.build_options == ()
        assert config.zero_copy == "auto"
        assert config.num_queues == 1
        assert config.out_of_order is False
        assert config.warn_on_build_log is False
        assert config.verbosity is None

    def test_build_options_from_string(self):
        """A single options string is split on whitespace."""
        config = ContextConfig(build_options="-cl-fast-relaxed-math -DN=4")
        assert config.build_options == ("-cl-fast-relaxed-math", "-DN=4")

    def test_build_options_from_list(self):
        config = ContextConfig(build_options=["-Werror"])
        assert config.build_options == ("-Werror",)

    def test_build_options_must_be_strings(self):
        with pytest.raises(TypeError):
            ContextConfig(build_options=[1])

    def test_invalid_zero_copy(self):
        with pytest.raises(ValueError):
            ContextConfig(zero_copy="sometimes")

    def test_num_queues_lower_bound(self):
        with pytest.raises(ValueError, match="num_queues must be >= 1"):
            ContextConfig(num_queues=0)

    @pytest.mark.parametrize("value", [1.0, True])
    def test_num_queues_type(self, value):
        with pytest.raises(TypeError, match="num_queues must be of type int"):
            ContextConfig(num_queues=value)

    def test_invalid_verbosity(self):
        with pytest.raises(ValueError):
            ContextConfig(verbosity="loud")

    def test_frozen(self):
        """Settings cannot be changed behind a context's back."""
        config = ContextConfig()
        with pytest.raises(attrs.exceptions.FrozenInstanceError):
            config.zero_copy = "never"

    def test_updated_returns_copy_and_changed_keys(self):
        config = ContextConfig()
        new, changed = config.updated({"num_queues": 2}, zero_copy="auto")
        assert changed == {"num_queues"}
        assert new.num_queues == 2
        assert config.num_queues == 1

    def test_updated_compares_converted_values(self):
        """An options string equal to the current tuple is not a change."""
        config = ContextConfig(build_options=("-DX=1",))
        new, changed = config.updated(build_options="-DX=1")
        assert changed == set()
        assert new == config

    def test_updated_validates(self):
        config = ContextConfig()
        with pytest.raises(ValueError):
            config.updated(num_queues=0)

    def test_updated_unknown_key(self):
        config = ContextConfig()
        with pytest.raises(KeyError, match="Unrecognised context settings"):
            config.updated(queue_count=2)
