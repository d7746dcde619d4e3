"""工具访问策略测试：验证允许名单、拒绝名单与优先级。"""

from capability_router.domain.models import ToolManifest
from capability_router.infra.security.tool_policy import ToolAccessPolicy


def _tool(name: str, domain: str = "email") -> ToolManifest:
    return ToolManifest(domain=domain, name=name)


def test_policy_allows_everything_by_default() -> None:
    policy = ToolAccessPolicy()
    assert policy.decide(_tool("gmail")).allowed is True


def test_policy_allow_list_by_name_or_qualified_name() -> None:
    """允许名单可使用工具名或 domain/name。"""
    policy = ToolAccessPolicy(allow_list=["gmail", "files/backup"])
    assert policy(_tool("gmail")) is True
    assert policy(_tool("backup", domain="files")) is True
    assert policy(_tool("backup", domain="other")) is False


def test_policy_empty_allow_list_rejects_all() -> None:
    assert ToolAccessPolicy(allow_list=[]).decide(_tool("gmail")).allowed is False


def test_policy_deny_wins_over_allow() -> None:
    policy = ToolAccessPolicy(allow_list=["gmail"], deny_list=["email/gmail"])
    decision = policy.decide(_tool("gmail"))
    assert decision.allowed is False
    assert decision.message == "rejected by tool policy: deny list"
