"""Tests for the command-line interface."""

from click.testing import CliRunner

from factories import memory_db
from performance_recommender.cli import cli
from performance_recommender.workflow import recommendations


class TestCli:
    """Test CLI error rendering."""

    def setup_method(self):
        """Set up test fixtures."""
        self.db = memory_db()
        self.runner = CliRunner()

    def teardown_method(self):
        self.db.close()

    def test_error_text_is_not_read_as_markup(self, monkeypatch):
        monkeypatch.setattr(recommendations, "get_db", lambda: self.db)

        result = self.runner.invoke(cli, ["history", "[bold]7[/bold]"])

        assert result.exit_code == 1
        assert "Recommendation [bold]7[/bold] not found" in result.output

    def test_unknown_recommendation(self, monkeypatch):
        monkeypatch.setattr(recommendations, "get_db", lambda: self.db)

        result = self.runner.invoke(cli, ["approve", "42", "--actor", "1"])

        assert result.exit_code == 1
        assert "Recommendation 42 not found" in result.output
