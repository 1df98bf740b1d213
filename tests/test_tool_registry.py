"""Tests for the Comrade Tool Registry.

Covers registration checks, lookup, context filtering, call validation and
schema generation.
"""

import pytest
from conftest import make_tool

from comrade.core.models import ChatToolCall, ExecutionContext, RiskTier, SecurityLevel
from comrade.exceptions import DuplicateToolError, InvalidToolDefinitionError
from comrade.tools.models import ToolCategory, ToolSecurity
from comrade.tools.registry import ToolDefinition, ToolRegistry


class TestToolRegistration:
    """Tests for registering and looking up tools."""

    def test_register_tool(self, registry):
        registry.register(make_tool("test_tool"))
        assert "test_tool" in registry
        assert len(registry) == 1

    def test_register_duplicate_raises(self, registry):
        registry.register(make_tool("test_tool"))
        with pytest.raises(DuplicateToolError, match="already registered"):
            registry.register(make_tool("test_tool"))
        assert len(registry) == 1

    def test_get_existing_tool(self, registry):
        registry.register(make_tool("calc"))
        result = registry.get("calc")
        assert result is not None
        assert result.name == "calc"

    def test_get_nonexistent_tool(self, registry):
        assert registry.get("nonexistent") is None

    def test_get_all_keeps_registration_order(self, registry):
        for name in ("b", "a", "c"):
            registry.register(make_tool(name))
        assert [t.name for t in registry.get_all()] == ["b", "a", "c"]

    def test_unregister(self, registry):
        registry.register(make_tool("x"))
        assert registry.unregister("x") is True
        assert registry.unregister("x") is False
        assert "x" not in registry

    def test_by_category(self, registry):
        tool = make_tool("fs")
        tool.category = ToolCategory.FILESYSTEM
        registry.register(tool)
        registry.register(make_tool("other"))
        assert [t.name for t in registry.by_category(ToolCategory.FILESYSTEM)] == ["fs"]
        assert [t.name for t in registry.by_category("general")] == ["other"]


class TestDefinitionChecks:
    def _tool(self, **overrides) -> ToolDefinition:
        values = {
            "name": "t",
            "description": "A tool",
            "parameters": {"type": "object"},
            "executor": lambda p, c: None,
        }
        values.update(overrides)
        return ToolDefinition(**values)

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_bad_name(self, registry, name):
        with pytest.raises(InvalidToolDefinitionError):
            registry.register(self._tool(name=name))

    def test_missing_description(self, registry):
        with pytest.raises(InvalidToolDefinitionError, match="description"):
            registry.register(self._tool(description=""))

    def test_parameters_must_be_dict(self, registry):
        with pytest.raises(InvalidToolDefinitionError, match="parameters"):
            registry.register(self._tool(parameters="object"))

    def test_executor_must_be_callable(self, registry):
        with pytest.raises(InvalidToolDefinitionError, match="executor"):
            registry.register(self._tool(executor="run"))

    def test_security_dict_is_validated(self, registry):
        tool = self._tool(security={"risk_tier": "medium", "requires_approval": True})
        registry.register(tool)
        assert isinstance(tool.security, ToolSecurity)
        assert tool.risk_tier == RiskTier.MEDIUM
        assert tool.requires_approval

    def test_unknown_tier_rejected(self, registry):
        with pytest.raises(InvalidToolDefinitionError, match="security"):
            registry.register(self._tool(security={"risk_tier": "extreme"}))
        assert len(registry) == 0

    def test_missing_security_rejected(self, registry):
        with pytest.raises(InvalidToolDefinitionError, match="security metadata is required"):
            registry.register(self._tool())
        assert len(registry) == 0

    def test_invalid_schema_rejected(self, registry):
        with pytest.raises(InvalidToolDefinitionError, match="not a valid JSON schema"):
            registry.register(self._tool(parameters={"type": "objekt"}, security=ToolSecurity()))
        assert len(registry) == 0

    def test_explicit_low_security(self, registry):
        tool = self._tool(security=ToolSecurity())
        registry.register(tool)
        assert tool.risk_tier == RiskTier.LOW
        assert not tool.requires_approval


class TestListAvailable:
    """Tests for context-based tool filtering."""

    def _populate(self, registry):
        registry.register(make_tool("low"))
        registry.register(make_tool("medium", tier=RiskTier.MEDIUM))
        registry.register(make_tool("high", tier=RiskTier.HIGH))
        registry.register(make_tool("host_only", allowed_in_restricted_host=False))
        registry.register(make_tool("needs_write", permissions=frozenset({"filesystem.write"})))

    def test_normal_hides_high_tier(self, registry):
        self._populate(registry)
        ctx = ExecutionContext(caller_permissions=frozenset({"filesystem.write"}))
        names = {t.name for t in registry.list_available(ctx)}
        assert names == {"low", "medium", "host_only", "needs_write"}

    def test_elevated_shows_high_tier(self, registry):
        self._populate(registry)
        ctx = ExecutionContext(security_level=SecurityLevel.ELEVATED)
        assert "high" in {t.name for t in registry.list_available(ctx)}

    def test_restricted_never_lists_high_tier(self, registry):
        self._populate(registry)
        registry.register(make_tool("high_no_approval", tier=RiskTier.HIGH))
        registry.register(make_tool("high_approval", tier=RiskTier.HIGH, requires_approval=True))
        ctx = ExecutionContext(
            security_level=SecurityLevel.RESTRICTED,
            caller_permissions=frozenset({"filesystem.write"}),
        )
        available = registry.list_available(ctx)
        assert available
        assert all(t.risk_tier != RiskTier.HIGH for t in available)

    def test_restricted_host_filter(self, registry):
        self._populate(registry)
        ctx = ExecutionContext(restricted_host=True)
        assert "host_only" not in {t.name for t in registry.list_available(ctx)}

    def test_permissions_filter(self, registry):
        self._populate(registry)
        ctx = ExecutionContext()
        assert "needs_write" not in {t.name for t in registry.list_available(ctx)}


class TestValidateCall:
    def test_unknown_tool(self, registry):
        result = registry.validate_call(ChatToolCall(name="ghost"))
        assert result.errors == ["Tool 'ghost' not found"]

    def test_missing_id(self, registry):
        registry.register(make_tool("t"))
        result = registry.validate_call(ChatToolCall(id="", name="t"))
        assert "Tool call ID is required" in result.errors

    def test_parse_error(self, registry):
        registry.register(make_tool("t"))
        result = registry.validate_call(ChatToolCall(name="t", parse_error="arguments are not valid JSON"))
        assert result.errors == ["Malformed arguments: arguments are not valid JSON"]

    def test_schema_errors(self, registry):
        registry.register(make_tool("t"))
        result = registry.validate_call(ChatToolCall(name="t", parameters={"text": 5}))
        assert result.errors == ["parameters.text: 5 is not of type 'string'"]

    def test_valid_call(self, registry):
        registry.register(make_tool("t"))
        assert registry.validate_call(ChatToolCall(name="t", parameters={"text": "hi"})).valid


class TestSchemas:
    def test_all_schemas(self, registry):
        registry.register(make_tool("a"))
        registry.register(make_tool("b"))
        schemas = registry.get_schemas()
        assert [s["name"] for s in schemas] == ["a", "b"]
        assert set(schemas[0]) == {"name", "description", "parameters"}

    def test_subset(self, registry):
        registry.register(make_tool("a"))
        registry.register(make_tool("b"))
        assert [s["name"] for s in registry.get_schemas([registry.get("b")])] == ["b"]
