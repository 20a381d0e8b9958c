"""Unit tests for dms.engine.context — ExecutionContext."""

from dms.engine.context import ExecutionContext


class TestExecutionContext:
    def test_defaults(self):
        ctx = ExecutionContext(user_id=2, username="jsmith")
        assert ctx.project_id is None
        assert ctx.is_admin is False
        assert ctx.execution_id.startswith("exec_")

    def test_unique_execution_ids(self):
        a = ExecutionContext(user_id=2, username="jsmith")
        b = ExecutionContext(user_id=2, username="jsmith")
        assert a.execution_id != b.execution_id

    def test_display_name_falls_back_to_username(self):
        assert ExecutionContext(user_id=2, username="jsmith").display_name == "jsmith"
        assert ExecutionContext(user_id=2, username="jsmith", full_name="John Smith").display_name == "John Smith"

    def test_sender(self):
        ctx = ExecutionContext(user_id=2, username="jsmith", full_name="John Smith", email="js@example.net")
        assert ctx.sender == "John Smith <js@example.net>"
        assert ExecutionContext(user_id=2, username="jsmith").sender == "jsmith"

    def test_for_project_keeps_execution_id(self):
        ctx = ExecutionContext(user_id=2, username="jsmith", project_id=1, is_admin=True)
        other = ctx.for_project(5)
        assert other.project_id == 5
        assert other.execution_id == ctx.execution_id
        assert other.is_admin is True
        assert ctx.project_id == 1

    def test_to_dict(self):
        d = ExecutionContext(user_id=2, username="jsmith", project_id=1).to_dict()
        assert d["user_id"] == 2
        assert d["project_id"] == 1
        assert set(d) == {"user_id", "username", "project_id", "is_admin", "execution_id"}
