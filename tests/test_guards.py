"""Tests for the policy guard chain."""

import logging
from pathlib import Path
from unittest.mock import patch

import pytest

from swarm_dispatch.config import Config
from swarm_dispatch.guards import GuardDecision, GuardRejection, ToolInvocation, build_guard_chain
from swarm_dispatch.guards.audit import AuditGuard, audit_log_path, format_audit_line
from swarm_dispatch.guards.base import Guard, GuardChain
from swarm_dispatch.guards.delegation import (
	DelegationGuard,
	build_persona_policies,
	extract_target,
	field_strategy,
)
from swarm_dispatch.guards.plans import PlanRegistrationGuard, plan_name_from_path
from swarm_dispatch.guards.safety import DeprecatedAliasGuard, DestructiveCommandGuard, SecretFileGuard
from swarm_dispatch.registry.session_plans import lookup_plan, plan_registry

from .helpers import write_plan

SESSION = "ses_guard123456"


def call(tool: str, session_id: str = SESSION, **args) -> ToolInvocation:
	return ToolInvocation(tool=tool, session_id=session_id, args=args)


class TestDeprecatedAlias:
	"""Retired tool names."""

	@pytest.mark.asyncio
	async def test_bash_redirects_to_sandbox_exec(self):
		with pytest.raises(GuardRejection) as exc:
			await DeprecatedAliasGuard().before(call("bash", command="ls"))
		assert "sandbox_exec" in exc.value.message
		assert "Example" in exc.value.message
		assert exc.value.guard == "deprecated_alias"

	def test_only_applies_to_aliases(self):
		guard = DeprecatedAliasGuard()
		assert guard.applies("bash")
		assert not guard.applies("sandbox_exec")

	@pytest.mark.asyncio
	async def test_custom_aliases(self):
		guard = DeprecatedAliasGuard({"old_read": ("read", 'read({"filePath": "a.py"})')})
		assert not guard.applies("bash")
		with pytest.raises(GuardRejection, match="Use `read` instead"):
			await guard.before(call("old_read"))


class TestDestructiveCommand:
	"""Destructive shell patterns."""

	@pytest.mark.asyncio
	async def test_rm_rf_rejected(self):
		with pytest.raises(GuardRejection) as exc:
			await DestructiveCommandGuard().before(call("sandbox_exec", command="rm -rf src"))
		assert exc.value.message == 'Blocked destructive command: "rm -rf src"'

	@pytest.mark.asyncio
	async def test_ls_allowed(self):
		await DestructiveCommandGuard().before(call("sandbox_exec", command="ls -la"))

	@pytest.mark.parametrize("command", [
		"git push origin main --force",
		"git reset --hard HEAD~3",
		"psql -c 'drop table users'",
		"dd if=/dev/zero > /dev/sda",
	])
	def test_other_patterns_match(self, command: str):
		assert DestructiveCommandGuard().matches(command) is not None

	@pytest.mark.parametrize("command", ["git push origin main", "git reset --hard HEAD~1", "rm file.txt"])
	def test_benign_commands(self, command: str):
		assert DestructiveCommandGuard().matches(command) is None

	@pytest.mark.asyncio
	async def test_cmd_field_fallback(self):
		with pytest.raises(GuardRejection):
			await DestructiveCommandGuard().before(call("sandbox_exec", cmd="rm -rf build"))

	@pytest.mark.asyncio
	async def test_echo_is_truncated(self):
		command = "rm -rf src " + "x" * 500
		with pytest.raises(GuardRejection) as exc:
			await DestructiveCommandGuard().before(call("sandbox_exec", command=command))
		assert exc.value.message == f'Blocked destructive command: "{command[:100]}"'

	def test_ignores_other_tools(self):
		assert not DestructiveCommandGuard().applies("read")


class TestSecretFile:
	"""Secret-bearing file reads."""

	@pytest.mark.asyncio
	async def test_env_rejected(self):
		with pytest.raises(GuardRejection, match=r'"/project/\.env"'):
			await SecretFileGuard().before(call("read", filePath="/project/.env"))

	@pytest.mark.asyncio
	async def test_source_allowed(self):
		await SecretFileGuard().before(call("read", filePath="/project/src/index.ts"))

	@pytest.mark.asyncio
	@pytest.mark.parametrize("path", ["id_rsa.pem", "server.KEY", "cert.p12", "aws.credentials"])
	async def test_other_secret_extensions(self, path: str):
		with pytest.raises(GuardRejection):
			await SecretFileGuard().before(call("read", path=path))

	@pytest.mark.asyncio
	async def test_env_example_allowed(self):
		"""Only the extension counts."""
		await SecretFileGuard().before(call("read", filePath="/project/.env.example"))


class TestDelegation:
	"""Delegation capability policy."""

	def test_extract_target_order(self):
		"""subagent_type wins over category; result is lower-cased."""
		assert extract_target({"subagent_type": "Implementer", "category": "other"}) == "implementer"
		assert extract_target({"subagent_type": "", "category": "Operator"}) == "operator"
		assert extract_target({"prompt": "x"}) is None
		assert extract_target("not a dict") is None

	def test_custom_strategies(self):
		assert extract_target({"agent": "X"}, [field_strategy("agent")]) == "x"

	@pytest.mark.asyncio
	async def test_implementer_names_entry_points(self):
		"""The message points at /synth and /apply."""
		with pytest.raises(GuardRejection) as exc:
			await DelegationGuard().before(call("task", subagent_type="implementer", prompt="do it"))
		assert "/synth" in exc.value.message
		assert "/apply" in exc.value.message

	@pytest.mark.asyncio
	async def test_operator_restricted(self):
		with pytest.raises(GuardRejection, match="restricted"):
			await DelegationGuard().before(call("task", category="OPERATOR"))

	@pytest.mark.asyncio
	async def test_unrestricted_persona_proceeds(self):
		await DelegationGuard().before(call("task", subagent_type="researcher"))

	@pytest.mark.asyncio
	async def test_no_target_proceeds(self):
		await DelegationGuard().before(call("task", prompt="anything"))

	@pytest.mark.asyncio
	async def test_configured_persona_names(self):
		guard = DelegationGuard(build_persona_policies(implementer="Builder", operator="ops"))
		with pytest.raises(GuardRejection):
			await guard.before(call("task", subagent_type="builder"))
		await guard.before(call("task", subagent_type="implementer"))


class TestPlanRegistration:
	"""Plan artifact auto-registration."""

	def test_plan_name_from_path(self):
		assert plan_name_from_path("/repo/.ai/plan-auth.md") == "auth"
		assert plan_name_from_path(".ai\\plan-db.md") == "db"
		assert plan_name_from_path("/repo/docs/plan-auth.md") is None
		assert plan_name_from_path("/repo/.ai/notes.md") is None
		assert plan_name_from_path("/repo/.ai/plan-Bad Name.md") is None
		assert plan_name_from_path("/repo/.ai/plan-..md") is None

	@pytest.mark.asyncio
	async def test_registers_plan_write(self, tmp_path: Path):
		guard = PlanRegistrationGuard(tmp_path)
		path = write_plan(tmp_path, "auth")
		await guard.before(call("write", filePath=str(path)))
		record = await lookup_plan(tmp_path, SESSION)
		assert record is not None and record.plan == "auth"

	@pytest.mark.asyncio
	async def test_ignores_other_files(self, tmp_path: Path):
		await PlanRegistrationGuard(tmp_path).before(call("write", filePath=str(tmp_path / "src" / "a.py")))
		assert not plan_registry.path(tmp_path).exists()

	@pytest.mark.asyncio
	async def test_requires_session(self, tmp_path: Path):
		await PlanRegistrationGuard(tmp_path).before(call("write", session_id="", filePath=".ai/plan-x.md"))
		assert not plan_registry.path(tmp_path).exists()

	@pytest.mark.asyncio
	async def test_registers_relative_plan_path(self, tmp_path: Path):
		await PlanRegistrationGuard(tmp_path).before(call("write", filePath=".ai/plan-db.md"))
		record = await lookup_plan(tmp_path, SESSION)
		assert record is not None and record.plan == "db"

	@pytest.mark.asyncio
	async def test_ignores_unsafe_plan_name(self, tmp_path: Path):
		path = tmp_path / ".ai" / "plan-Bad Name.md"
		await PlanRegistrationGuard(tmp_path).before(call("write", filePath=str(path)))
		assert not plan_registry.path(tmp_path).exists()

	@pytest.mark.asyncio
	async def test_ignores_other_projects_plans(self, tmp_path: Path):
		"""A plan written into another project's .ai/ dir is not this project's plan."""
		project = tmp_path / "project"
		project.mkdir()
		guard = PlanRegistrationGuard(project)
		await guard.before(call("write", filePath=str(tmp_path / "other" / ".ai" / "plan-auth.md")))
		await guard.before(call("write", filePath=str(project / "sub" / ".ai" / "plan-auth.md")))
		await guard.before(call("write", filePath=str(project / ".ai" / ".." / "x" / ".ai" / "plan-auth.md")))
		assert not plan_registry.path(project).exists()


class TestAudit:
	"""Post-execution audit trail."""

	def test_format(self):
		line = format_audit_line(call("write", filePath="src/a.py"))
		timestamp, session, tool, path = line.rstrip("\n").split(" | ")
		assert session == "ses_gua"
		assert tool == "write"
		assert path == "src/a.py"
		assert "T" in timestamp

	def test_format_unknowns(self):
		line = format_audit_line(call("edit", session_id=""))
		assert "| unknown | edit | unknown" in line

	@pytest.mark.asyncio
	async def test_appends_lines(self, tmp_path: Path):
		guard = AuditGuard(tmp_path)
		await guard.after(call("write", filePath="a.py"))
		await guard.after(call("edit", filePath="b.py"))
		lines = audit_log_path(tmp_path).read_text().splitlines()
		assert len(lines) == 2
		assert lines[1].endswith("| edit | b.py")

	@pytest.mark.asyncio
	async def test_failures_never_raise(self, tmp_path: Path):
		with patch("swarm_dispatch.guards.audit._append", side_effect=OSError("read-only fs")):
			await AuditGuard(tmp_path).after(call("write", filePath="a.py"))


class RecordingGuard(Guard):
	name = "recording"
	side_effects = True

	def __init__(self):
		self.seen = []

	async def before(self, invocation: ToolInvocation) -> None:
		self.seen.append(invocation.tool)


class TestGuardChain:
	"""Ordering, short-circuiting and dry runs."""

	@pytest.mark.asyncio
	async def test_rejection_stops_later_guards(self):
		recorder = RecordingGuard()
		chain = GuardChain([DestructiveCommandGuard(), recorder])
		with pytest.raises(GuardRejection):
			await chain.before(call("sandbox_exec", command="rm -rf src"))
		assert recorder.seen == []

		await chain.before(call("sandbox_exec", command="ls"))
		assert recorder.seen == ["sandbox_exec"]

	@pytest.mark.asyncio
	async def test_evaluate_is_dry_run(self):
		recorder = RecordingGuard()
		chain = GuardChain([recorder])
		verdict = await chain.evaluate(call("write"))
		assert verdict.allowed
		assert recorder.seen == []

	@pytest.mark.asyncio
	async def test_evaluate_rejection(self):
		chain = GuardChain([SecretFileGuard()])
		verdict = await chain.evaluate(call("read", filePath=".env"))
		assert verdict.decision == GuardDecision.REJECTED
		assert verdict.to_dict()["guard"] == "secret_file"

	@pytest.mark.asyncio
	async def test_rejection_goes_to_security_logger(self, caplog):
		with caplog.at_level(logging.WARNING, logger="swarm_dispatch.guards"):
			await GuardChain([SecretFileGuard()]).evaluate(call("read", filePath=".env"))
		assert any(r.name.startswith("swarm_dispatch.guards") for r in caplog.records)

	@pytest.mark.asyncio
	async def test_default_chain_order(self, tmp_path: Path):
		"""Checks run before plan registration; auditing comes last."""
		chain = build_guard_chain(tmp_path, Config(project_dir=tmp_path))
		assert [g.name for g in chain] == [
			"deprecated_alias", "destructive_command", "secret_file",
			"delegation", "plan_registration", "audit",
		]
		await chain.before(call("write", filePath=str(tmp_path / ".ai" / "plan-auth.md")))
		assert (await plan_registry.aread(tmp_path)) != {}

	@pytest.mark.asyncio
	async def test_default_chain_uses_config_personas(self, tmp_path: Path):
		config = Config(project_dir=tmp_path, implementer_agent="builder")
		chain = build_guard_chain(tmp_path, config)
		verdict = await chain.evaluate(call("task", subagent_type="builder"))
		assert not verdict.allowed
