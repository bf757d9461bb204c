"""
Regeneration Pipeline Tests

End-to-end protocol runs with a fake LLM and a fake database.
"""

import sys
import os

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from exceptions import ConnectivityError, ProviderError
from pipeline.core import RegenerationPipeline, PipelineResult
from pipeline.prompt_builder import ChartDirective, GenerationRequest
from pipeline.sql_generator import QueryGenerator
from fakes import FakeBackend, FakeDriverError, FakeLLM, SHOP_TABLES, reply


FIRST_SQL = "SELECT user_id, COUNT(*) FROM orders GROUP BY user_id"
FIXED_SQL = "SELECT customer_id, COUNT(*) FROM orders GROUP BY customer_id"
UNKNOWN_COLUMN = "Unknown column 'user_id' in 'field list'"
ROWS = [
    {"customer_id": 1, "COUNT(*)": 4},
    {"customer_id": 2, "COUNT(*)": 1},
    {"customer_id": 3, "COUNT(*)": 7},
]


def make_pipeline(llm, allow_unsafe=False):
    return RegenerationPipeline(QueryGenerator(client=llm), allow_unsafe=allow_unsafe)


@pytest.fixture
def request_(shop_schema):
    return GenerationRequest(schema=shop_schema, question="how many orders per user")


class TestScenarios:

    def test_a_success_on_first_attempt(self, request_):
        llm = FakeLLM(reply(FIRST_SQL))
        backend = FakeBackend(results=[ROWS])

        result = make_pipeline(llm).run(backend, request_)

        assert result.success
        assert result.rows == ROWS
        assert len(result.rows) == 3
        assert result.regenerated_query is None
        assert result.original_error == ""
        assert result.attempts == 1
        assert backend.executed == [FIRST_SQL]
        assert "regeneratedQuery" not in result.to_dict()

    def test_b_regeneration_after_execution_error(self, request_):
        llm = FakeLLM(reply(FIRST_SQL), reply(FIXED_SQL, explanation="Uses customer_id"))
        backend = FakeBackend(results=[FakeDriverError(UNKNOWN_COLUMN), ROWS])

        result = make_pipeline(llm).run(backend, request_)

        assert result.success
        assert result.rows == ROWS
        assert result.regenerated_query is not None
        assert result.regenerated_query.sql == FIXED_SQL
        assert result.original_error == UNKNOWN_COLUMN
        assert result.attempts == 2
        assert backend.executed == [FIRST_SQL, FIXED_SQL]

        # The second prompt carries the error and the failed SQL
        assert UNKNOWN_COLUMN in llm.prompts[1]
        assert "Faulty SQL:" in llm.prompts[1]
        assert "PREVIOUS ATTEMPT FAILED" not in llm.prompts[0]

        data = result.to_dict()
        assert data["regeneratedQuery"] == {"sql": FIXED_SQL, "explanation": "Uses customer_id"}
        assert data["originalError"] == UNKNOWN_COLUMN
        assert data["results"] == ROWS

    def test_c_unsafe_query_is_never_executed(self, request_):
        llm = FakeLLM(reply("DELETE FROM orders", is_unsafe=True))
        backend = FakeBackend(results=[[]])

        result = make_pipeline(llm, allow_unsafe=False).run(backend, request_)

        assert not result.success
        assert result.error_type == "unsafe"
        assert result.status_code == 403
        assert backend.execute_count == 0
        assert llm.call_count == 1

    def test_d_malformed_reply_is_not_regenerated(self, request_):
        llm = FakeLLM('{"sql": "SELECT 1", "isUnsafe": false}')
        backend = FakeBackend(results=[ROWS])

        result = make_pipeline(llm).run(backend, request_)

        assert not result.success
        assert result.error_type == "schema_violation"
        assert llm.call_count == 1
        assert backend.execute_count == 0


class TestRegenerationBound:

    def test_at_most_two_generations_and_two_executions(self, request_):
        llm = FakeLLM(reply(FIRST_SQL), reply(FIXED_SQL), reply("SELECT 3"))
        backend = FakeBackend(results=[FakeDriverError("boom 1"), FakeDriverError("boom 2"),
                                       FakeDriverError("boom 3")])

        result = make_pipeline(llm).run(backend, request_)

        assert not result.success
        assert llm.call_count == 2
        assert backend.execute_count == 2
        assert result.error_type == "execution"
        assert result.error == "boom 2"
        assert result.original_error == "boom 1"
        assert result.regenerated_query.sql == FIXED_SQL
        assert result.attempts == 2

    def test_regenerated_unsafe_query_is_refused(self, request_):
        llm = FakeLLM(reply(FIRST_SQL), reply("UPDATE orders SET total = 0", is_unsafe=False))
        backend = FakeBackend(results=[FakeDriverError(UNKNOWN_COLUMN), ROWS])

        result = make_pipeline(llm).run(backend, request_)

        assert not result.success
        assert result.error_type == "unsafe"
        assert result.original_error == UNKNOWN_COLUMN
        assert backend.execute_count == 1

    def test_regeneration_provider_failure_keeps_original_error(self, request_):
        llm = FakeLLM(reply(FIRST_SQL), ProviderError("API Error: upstream down"))
        backend = FakeBackend(results=[FakeDriverError(UNKNOWN_COLUMN)])

        result = make_pipeline(llm).run(backend, request_)

        assert not result.success
        assert result.error_type == "provider"
        assert result.error == "API Error: upstream down"
        assert result.original_error == UNKNOWN_COLUMN
        assert backend.execute_count == 1

    def test_regeneration_parse_failure(self, request_):
        llm = FakeLLM(reply(FIRST_SQL), "not json at all")
        backend = FakeBackend(results=[FakeDriverError(UNKNOWN_COLUMN)])

        result = make_pipeline(llm).run(backend, request_)

        assert not result.success
        assert result.error_type == "parse"
        assert result.original_error == UNKNOWN_COLUMN


class TestFailuresWithoutRegeneration:

    def test_provider_error_on_first_attempt(self, request_):
        llm = FakeLLM(ProviderError("Rate limit exceeded."))
        backend = FakeBackend()

        result = make_pipeline(llm).run(backend, request_)

        assert not result.success
        assert result.error_type == "provider"
        assert result.status_code == 502
        assert llm.call_count == 1
        assert backend.execute_count == 0

    def test_validation_error(self):
        llm = FakeLLM(reply(FIRST_SQL))
        result = make_pipeline(llm).run(FakeBackend(), GenerationRequest(schema=[], question="q"))

        assert not result.success
        assert result.error_type == "validation"
        assert llm.call_count == 0

    def test_connectivity_error_is_not_regenerated(self, request_):
        class UnreachableBackend(FakeBackend):
            def execute(self, sql):
                self.executed.append(sql)
                raise ConnectivityError("Failed to connect to database: refused")

        llm = FakeLLM(reply(FIRST_SQL), reply(FIXED_SQL))
        backend = UnreachableBackend()

        result = make_pipeline(llm).run(backend, request_)

        assert not result.success
        assert result.error_type == "connectivity"
        assert llm.call_count == 1
        assert backend.execute_count == 1


class TestExecuteCallerQuery:

    def test_without_context_errors_are_reported(self):
        llm = FakeLLM(reply(FIXED_SQL))
        backend = FakeBackend(results=[FakeDriverError(UNKNOWN_COLUMN)])

        result = make_pipeline(llm).execute(backend, FIRST_SQL, False)

        assert not result.success
        assert result.error == UNKNOWN_COLUMN
        assert llm.call_count == 0

    def test_with_context_regenerates_once(self, request_):
        llm = FakeLLM(reply(FIXED_SQL))
        backend = FakeBackend(results=[FakeDriverError(UNKNOWN_COLUMN), ROWS])

        result = make_pipeline(llm).execute(backend, FIRST_SQL, False, request_)

        assert result.success
        assert result.regenerated_query.sql == FIXED_SQL
        assert result.original_error == UNKNOWN_COLUMN
        assert llm.call_count == 1

    def test_caller_safety_flag_is_rechecked(self):
        backend = FakeBackend(results=[[]])
        result = make_pipeline(FakeLLM()).execute(backend, "DELETE FROM orders", False)

        assert not result.success
        assert result.error_type == "unsafe"
        assert backend.execute_count == 0

    def test_unsafe_allowed_by_policy(self):
        backend = FakeBackend(results=[[]])
        result = make_pipeline(FakeLLM(), allow_unsafe=True).execute(
            backend, "DELETE FROM orders WHERE id = 1", True
        )

        assert result.success
        assert backend.executed == ["DELETE FROM orders WHERE id = 1"]


class TestAnswer:

    def test_introspects_then_runs(self):
        llm = FakeLLM(reply(
            "SELECT status, COUNT(*) AS n FROM orders GROUP BY status",
            chartConfig={"type": "pie", "labelColumn": "status", "valueColumn": "n"},
        ))
        backend = FakeBackend(tables=SHOP_TABLES, results=[ROWS])

        result = make_pipeline(llm).answer(backend, GenerationRequest(
            schema=[], question="orders by status", chart_directive=ChartDirective("pie")
        ))

        assert result.success
        assert "Table orders:" in llm.prompts[0]
        assert "Table users:" in llm.prompts[0]
        assert result.to_dict()["chartConfig"]["type"] == "pie"

    def test_unreachable_database(self):
        llm = FakeLLM(reply(FIRST_SQL))
        backend = FakeBackend(ping_error=ConnectivityError("Failed to connect", status_code=504))

        result = make_pipeline(llm).answer(backend, GenerationRequest(schema=[], question="q"))

        assert not result.success
        assert result.error_type == "connectivity"
        assert result.status_code == 504
        assert llm.call_count == 0


class TestPipelineResult:

    def test_failure_dict(self):
        result = PipelineResult(success=False, error="boom", error_type="execution")
        assert result.to_dict() == {"success": False, "error": "boom", "errorType": "execution"}

    def test_rows_default_to_empty_list(self):
        assert PipelineResult(success=True).rows == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
