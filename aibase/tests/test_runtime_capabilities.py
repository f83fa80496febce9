"""Tests for the capability modules behind the default extensions."""

import base64
import json
from types import SimpleNamespace

import httpx
import pytest

from aibase.config.settings import get_settings
from aibase.core.exceptions import ToolError
from aibase.extensions.hooks import FileUploadContext
from aibase.tools.runtime import (
    clickhouse,
    csv_document,
    duckdb,
    pdf_document,
    postgresql,
    trino,
    visualization,
    web_search,
)


def _mock_client(handler, calls):
    original = httpx.AsyncClient

    def factory(timeout):
        def recording(request):
            calls.append(request)
            return handler(request)

        return original(transport=httpx.MockTransport(recording), timeout=timeout)

    return factory


class TestWebSearch:
    @pytest.fixture(autouse=True)
    def api_key(self, monkeypatch):
        monkeypatch.setenv("BRAVE_API_KEY", "test-key")
        get_settings.cache_clear()

    @pytest.mark.asyncio
    async def test_web_search(self, monkeypatch):
        calls = []
        payload = {
            "web": {
                "results": [
                    {
                        "title": "Python",
                        "url": "https://python.org",
                        "description": "Home",
                        "page_age": "2024-01-01",
                        "meta_url": {"favicon": "https://python.org/favicon.ico"},
                    }
                ]
            }
        }
        monkeypatch.setattr(web_search, "_make_client", _mock_client(lambda r: httpx.Response(200, json=payload), calls))

        result = await web_search.web_search("python", count=3, country="US")

        assert result["total"] == 1
        assert result["results"][0] == {
            "title": "Python",
            "url": "https://python.org",
            "description": "Home",
            "age": "2024-01-01",
            "language": None,
            "favicon": "https://python.org/favicon.ico",
        }
        (request,) = calls
        assert request.url.path.endswith("/web/search")
        assert request.url.params["q"] == "python"
        assert request.url.params["count"] == "3"
        assert request.url.params["country"] == "US"
        assert request.url.params["safesearch"] == "strict"
        assert request.headers["X-Subscription-Token"] == "test-key"

    @pytest.mark.asyncio
    async def test_image_search(self, monkeypatch):
        calls = []
        payload = {
            "results": [
                {
                    "title": "Cat",
                    "source": "example.com",
                    "thumbnail": {"src": "https://img.test/t.jpg"},
                    "properties": {"url": "https://img.test/full.jpg", "width": 640, "height": 480},
                }
            ]
        }
        monkeypatch.setattr(web_search, "_make_client", _mock_client(lambda r: httpx.Response(200, json=payload), calls))

        result = await web_search.image_search("cat", spellcheck=False)

        assert result["results"][0]["url"] == "https://img.test/full.jpg"
        assert result["results"][0]["thumbnail"] == "https://img.test/t.jpg"
        assert calls[0].url.path.endswith("/images/search")
        assert calls[0].url.params["spellcheck"] == "false"

    @pytest.mark.asyncio
    async def test_http_error_status(self, monkeypatch):
        monkeypatch.setattr(
            web_search, "_make_client", _mock_client(lambda r: httpx.Response(429, text="slow down"), [])
        )
        with pytest.raises(ToolError, match="Web search failed: 429 Too Many Requests - slow down"):
            await web_search.web_search("python")

    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch):
        monkeypatch.setenv("BRAVE_API_KEY", "")
        get_settings.cache_clear()
        with pytest.raises(ToolError, match="BRAVE_API_KEY"):
            await web_search.web_search("python")

    @pytest.mark.asyncio
    async def test_missing_query(self):
        with pytest.raises(ToolError, match="requires 'search_query'"):
            await web_search.web_search("")


class TestClickHouse:
    @pytest.mark.asyncio
    async def test_json_rows_and_stats(self, monkeypatch):
        calls = []

        def handler(request):
            summary = json.dumps({"read_rows": "2", "read_bytes": "64", "elapsed_ns": "1000"})
            return httpx.Response(
                200,
                text='{"id": 1}\n{"id": 2}\nnot-json\n',
                headers={"X-ClickHouse-Summary": summary},
            )

        monkeypatch.setattr(clickhouse, "_make_client", _mock_client(handler, calls))

        result = await clickhouse.clickhouse(
            "SELECT id FROM t WHERE id > {min:UInt32}",
            "http://ch.test:8123/",
            database="analytics",
            username="reader",
            password="secret",
            params={"min": 0},
        )

        assert result["data"] == [{"id": 1}, {"id": 2}]
        assert result["row_count"] == 2
        assert result["stats"] == {"rows_read": "2", "bytes_read": "64", "elapsed": "1000"}

        (request,) = calls
        assert request.method == "POST"
        assert request.url.path == "/"
        assert request.url.params["database"] == "analytics"
        assert request.url.params["default_format"] == "JSONEachRow"
        assert request.url.params["param_min"] == "0"
        assert request.content == b"SELECT id FROM t WHERE id > {min:UInt32}"
        expected = "Basic " + base64.b64encode(b"reader:secret").decode()
        assert request.headers["Authorization"] == expected

    @pytest.mark.asyncio
    async def test_csv_format_returns_raw(self, monkeypatch):
        calls = []
        monkeypatch.setattr(
            clickhouse, "_make_client", _mock_client(lambda r: httpx.Response(200, text="1,a\n2,b\n"), calls)
        )
        result = await clickhouse.clickhouse("SELECT 1", "http://ch.test:8123", format="csv")
        assert result["raw"] == "1,a\n2,b\n"
        assert result["row_count"] == 2
        assert calls[0].url.params["default_format"] == "CSV"

    @pytest.mark.asyncio
    async def test_server_error_explained(self, monkeypatch):
        monkeypatch.setattr(
            clickhouse,
            "_make_client",
            _mock_client(lambda r: httpx.Response(404, text="Code: 60. Unknown table default.nope"), []),
        )
        with pytest.raises(ToolError, match="Check that database/tables/columns exist"):
            await clickhouse.clickhouse("SELECT * FROM nope", "http://ch.test:8123")

    @pytest.mark.asyncio
    async def test_requires_query_and_server(self):
        with pytest.raises(ToolError, match="requires 'query'"):
            await clickhouse.clickhouse("", "http://ch.test:8123")
        with pytest.raises(ToolError, match="requires 'server_url'"):
            await clickhouse.clickhouse("SELECT 1", "")


class TestPostgreSQL:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("postgresql://u:p@h:5432/db", "postgresql+asyncpg://u:p@h:5432/db"),
            ("postgres://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
            ("postgresql+psycopg2://u@h/db", "postgresql+asyncpg://u@h/db"),
            ("postgresql+asyncpg://u@h/db", "postgresql+asyncpg://u@h/db"),
        ],
    )
    def test_async_database_url(self, url, expected):
        assert postgresql.async_database_url(url) == expected

    def test_rejects_other_schemes(self):
        with pytest.raises(ToolError):
            postgresql.async_database_url("mysql://u@h/db")

    @pytest.mark.asyncio
    async def test_query_result_shape(self, monkeypatch):
        class Row:
            def __init__(self, mapping):
                self._mapping = mapping

            def __iter__(self):
                return iter(self._mapping.values())

        class FakeEngine:
            disposed = False

            async def dispose(self):
                FakeEngine.disposed = True

        async def fake_run(engine, query):
            return ["id", "email"], [Row({"id": 1, "email": "a@x.test"})], 1

        monkeypatch.setattr(postgresql, "make_engine", lambda url: FakeEngine())
        monkeypatch.setattr(postgresql, "_run", fake_run)

        result = await postgresql.postgresql("SELECT id, email FROM users", "postgresql://u:p@h/db")
        assert result["data"] == [{"id": 1, "email": "a@x.test"}]
        assert result["columns"] == ["id", "email"]
        assert result["row_count"] == 1
        assert FakeEngine.disposed

        raw = await postgresql.postgresql("SELECT 1", "postgresql://u:p@h/db", format="raw")
        assert raw["raw"] == [[1, "a@x.test"]]

    def test_error_explanations(self):
        assert "authentication failed" in postgresql._explain_error("password authentication failed for user", 5)
        assert "syntax error" in postgresql._explain_error('syntax error at or near "SELEC"', 5)
        assert "(5ms)" in postgresql._explain_error("something else", 5)

    @pytest.mark.asyncio
    async def test_requires_query(self):
        with pytest.raises(ToolError, match="requires 'query'"):
            await postgresql.postgresql("", "postgresql://u@h/db")


class TestVisualization:
    @pytest.mark.asyncio
    async def test_show_chart_args(self):
        result = await visualization.show_chart(
            "Sales", "bar", {"xAxis": ["Q1"], "series": [{"name": "2024", "data": [1]}]}, save_to="sales.png"
        )
        viz = result["__visualization"]
        assert viz["type"] == "show-chart"
        assert viz["args"] == {
            "title": "Sales",
            "chartType": "bar",
            "data": {"xAxis": ["Q1"], "series": [{"name": "2024", "data": [1]}]},
            "saveTo": "sales.png",
        }

    @pytest.mark.asyncio
    async def test_show_mermaid_requires_code(self):
        with pytest.raises(ToolError, match="show-mermaid requires: code"):
            await visualization.show_mermaid("Flow", "")

    @pytest.mark.asyncio
    async def test_show_table_requires_columns_and_data(self):
        with pytest.raises(ToolError, match="show-table requires: columns, data"):
            await visualization.show_table("T", None, None)


class TestCsvDocument:
    @pytest.fixture
    def csv_file(self, tmp_path):
        path = tmp_path / "sales.csv"
        path.write_text("region;amount\nnorth;10\nsouth;20\n\neast;30\n", encoding="utf-8")
        return path

    def test_is_csv(self):
        assert csv_document.is_csv("DATA.CSV")
        assert csv_document.is_csv("export", "text/csv")
        assert not csv_document.is_csv("notes.txt", "text/plain")

    def test_read_structure(self, csv_file):
        structure = csv_document.read_structure(str(csv_file), max_rows=2)
        assert structure["columns"] == ["region", "amount"]
        assert structure["delimiter"] == ";"
        assert structure["row_count"] == 3
        assert structure["preview"] == [{"region": "north", "amount": "10"}, {"region": "south", "amount": "20"}]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ToolError, match="CSV file not found"):
            csv_document.read_structure(str(tmp_path / "nope.csv"))

    @pytest.mark.asyncio
    async def test_summarize(self, csv_file):
        summary = await csv_document.summarize(str(csv_file))
        assert summary["description"].startswith("## CSV File Structure")
        assert "**File:** sales.csv" in summary["description"]
        assert "**Rows:** 3" in summary["description"]

    @pytest.mark.asyncio
    async def test_summarize_rejects_negative_rows(self, csv_file):
        with pytest.raises(ToolError):
            await csv_document.summarize(str(csv_file), max_rows=-1)

    @pytest.mark.asyncio
    async def test_describe_upload(self, csv_file):
        context = FileUploadContext(
            conv_id="c1",
            project_id="p1",
            file_name="sales.csv",
            file_path=str(csv_file),
            file_type="text/csv",
            file_size=csv_file.stat().st_size,
        )
        result = await csv_document.describe_upload(context)
        assert "`region`" in result["description"]

    @pytest.mark.asyncio
    async def test_describe_upload_ignores_other_files(self, tmp_path):
        result = await csv_document.describe_upload(
            {"file_name": "notes.txt", "file_type": "text/plain", "file_path": str(tmp_path / "notes.txt")}
        )
        assert result is None


class TestTrino:
    PAGES = {
        "/v1/statement": {"id": "q1", "nextUri": "http://trino.test/v1/statement/q1/1", "stats": {"state": "QUEUED"}},
        "/v1/statement/q1/1": {
            "id": "q1",
            "columns": [{"name": "id", "type": "integer"}, {"name": "name", "type": "varchar"}],
            "data": [[1, "a"]],
            "nextUri": "http://trino.test/v1/statement/q1/2",
            "stats": {"state": "RUNNING"},
        },
        "/v1/statement/q1/2": {
            "id": "q1",
            "data": [[2, "b"]],
            "stats": {"state": "FINISHED", "nodes": 1, "completedSplits": 4},
        },
    }

    def _serve(self, monkeypatch, calls):
        monkeypatch.setattr(
            trino, "_make_client", _mock_client(lambda r: httpx.Response(200, json=self.PAGES[r.url.path]), calls)
        )

    @pytest.mark.asyncio
    async def test_follows_next_uri_and_collects_rows(self, monkeypatch):
        calls = []
        self._serve(monkeypatch, calls)

        result = await trino.trino(
            "SELECT id, name FROM users",
            "http://trino.test/",
            catalog="hive",
            schema="web",
            username="analyst",
            password="secret",
        )

        assert result["data"] == [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}]
        assert result["row_count"] == 2
        assert result["stats"]["state"] == "FINISHED"
        assert result["stats"]["completedSplits"] == 4

        assert [(r.method, r.url.path) for r in calls] == [
            ("POST", "/v1/statement"),
            ("GET", "/v1/statement/q1/1"),
            ("GET", "/v1/statement/q1/2"),
        ]
        first = calls[0]
        assert first.content == b"SELECT id, name FROM users"
        assert first.headers["X-Trino-User"] == "analyst"
        assert first.headers["X-Trino-Catalog"] == "hive"
        assert first.headers["X-Trino-Schema"] == "web"
        assert first.headers["Authorization"] == "Basic " + base64.b64encode(b"analyst:secret").decode()

    @pytest.mark.asyncio
    async def test_raw_format(self, monkeypatch):
        self._serve(monkeypatch, [])
        result = await trino.trino("SELECT id, name FROM users", "http://trino.test", format="raw")
        assert result["columns"] == ["id", "name"]
        assert result["rows"] == [[1, "a"], [2, "b"]]

    @pytest.mark.asyncio
    async def test_query_error_payload(self, monkeypatch):
        payload = {"id": "q2", "error": {"message": "line 1:8: Column 'x' cannot be resolved"}}
        monkeypatch.setattr(trino, "_make_client", _mock_client(lambda r: httpx.Response(200, json=payload), []))
        with pytest.raises(ToolError, match="Column 'x' cannot be resolved"):
            await trino.trino("SELECT x", "http://trino.test")

    @pytest.mark.asyncio
    async def test_http_error_status(self, monkeypatch):
        monkeypatch.setattr(
            trino, "_make_client", _mock_client(lambda r: httpx.Response(503, text="Server is starting"), [])
        )
        with pytest.raises(ToolError, match="status 503"):
            await trino.trino("SELECT 1", "http://trino.test")

    @pytest.mark.asyncio
    async def test_requires_query_and_server(self):
        with pytest.raises(ToolError, match="requires 'query'"):
            await trino.trino("", "http://trino.test")
        with pytest.raises(ToolError, match="requires 'server_url'"):
            await trino.trino("SELECT 1", "")

    @pytest.mark.asyncio
    async def test_check_connection(self, monkeypatch):
        payload = {"id": "q3", "columns": [{"name": "version"}], "data": [["443"]]}
        monkeypatch.setattr(trino, "_make_client", _mock_client(lambda r: httpx.Response(200, json=payload), []))
        assert await trino.check_connection("http://trino.test") == {"connected": True, "version": "443"}

        monkeypatch.setattr(trino, "_make_client", _mock_client(lambda r: httpx.Response(500, text="down"), []))
        status = await trino.check_connection("http://trino.test")
        assert status["connected"] is False
        assert "status 500" in status["error"]


class TestDuckDB:
    @pytest.mark.asyncio
    async def test_in_memory_query(self):
        result = await duckdb.duckdb("SELECT 42 AS answer, 'x' AS label")
        assert result["data"] == [{"answer": 42, "label": "x"}]
        assert result["columns"] == ["answer", "label"]
        assert result["row_count"] == 1

    @pytest.mark.asyncio
    async def test_queries_csv_files_in_place(self, tmp_path):
        path = tmp_path / "sales.csv"
        path.write_text("region,amount\nnorth,10\nsouth,20\nnorth,5\n", encoding="utf-8")

        result = await duckdb.duckdb(
            f"SELECT region, CAST(SUM(amount) AS INTEGER) AS total FROM '{path}' GROUP BY region ORDER BY region"
        )
        assert result["data"] == [{"region": "north", "total": 15}, {"region": "south", "total": 20}]

    @pytest.mark.asyncio
    async def test_text_formats(self):
        query = "SELECT 1 AS a, 'x' AS b"
        as_csv = await duckdb.duckdb(query, format="csv")
        assert as_csv["output"].splitlines() == ["a,b", "1,x"]

        as_markdown = await duckdb.duckdb(query, format="markdown")
        assert as_markdown["output"] == "| a | b |\n| --- | --- |\n| 1 | x |"
        assert as_markdown["row_count"] == 1

    @pytest.mark.asyncio
    async def test_database_file_opened_read_only(self, tmp_path):
        database = str(tmp_path / "local.duckdb")
        await duckdb.duckdb("CREATE TABLE t AS SELECT 1 AS id", readonly=False, database=database)

        result = await duckdb.duckdb("SELECT id FROM t", database=database)
        assert result["data"] == [{"id": 1}]
        with pytest.raises(ToolError, match="DuckDB query failed"):
            await duckdb.duckdb("INSERT INTO t VALUES (2)", database=database)

    @pytest.mark.asyncio
    async def test_errors(self):
        with pytest.raises(ToolError, match="requires 'query'"):
            await duckdb.duckdb("")
        with pytest.raises(ToolError, match="format must be one of"):
            await duckdb.duckdb("SELECT 1", format="xml")
        with pytest.raises(ToolError, match="DuckDB query failed"):
            await duckdb.duckdb("SELECT * FROM missing_table")


class TestPdfDocument:
    @pytest.fixture
    def blank_pdf(self, tmp_path):
        from PyPDF2 import PdfWriter

        writer = PdfWriter()
        writer.add_blank_page(width=72, height=72)
        path = tmp_path / "blank.pdf"
        with path.open("wb") as fh:
            writer.write(fh)
        return path

    @pytest.fixture
    def fake_reader(self, monkeypatch):
        def reader(fh, password=None):
            texts = ["Quarterly report", "  ", "Revenue grew"]
            return SimpleNamespace(pages=[SimpleNamespace(extract_text=lambda t=t: t) for t in texts])

        monkeypatch.setattr(pdf_document, "PdfReader", reader)

    def test_is_pdf(self):
        assert pdf_document.is_pdf("REPORT.PDF")
        assert pdf_document.is_pdf("upload", "application/pdf")
        assert not pdf_document.is_pdf("notes.txt", "text/plain")

    def test_read_blank_pdf(self, blank_pdf):
        document = pdf_document.read_pdf(str(blank_pdf))
        assert document == {"file_name": "blank.pdf", "page_count": 1, "pages_read": 1, "text": ""}
        assert "No extractable text" in pdf_document.describe(document)

    def test_rejects_files_that_are_not_pdf(self, tmp_path):
        path = tmp_path / "fake.pdf"
        path.write_text("just text")
        with pytest.raises(ToolError, match="not a PDF document"):
            pdf_document.read_pdf(str(path))
        with pytest.raises(ToolError, match="PDF file not found"):
            pdf_document.read_pdf(str(tmp_path / "missing.pdf"))

    @pytest.mark.asyncio
    async def test_extract_limits_pages(self, tmp_path, fake_reader):
        path = tmp_path / "report.pdf"
        path.write_bytes(b"%PDF-1.4\n")

        full = await pdf_document.extract(str(path))
        assert full["text"] == "Quarterly report\n\nRevenue grew"
        assert full["page_count"] == 3

        first = await pdf_document.extract(str(path), max_pages=1)
        assert first["pages_read"] == 1
        assert first["text"] == "Quarterly report"

        with pytest.raises(ToolError, match="max_pages must be positive"):
            await pdf_document.extract(str(path), max_pages=0)

    @pytest.mark.asyncio
    async def test_describe_upload(self, tmp_path, fake_reader):
        path = tmp_path / "report.pdf"
        path.write_bytes(b"%PDF-1.4\n")
        context = FileUploadContext("c1", "p1", "report.pdf", str(path), "application/pdf", 9)

        result = await pdf_document.describe_upload(context)
        assert result["description"].startswith("## PDF Document")
        assert "**Pages:** 3" in result["description"]
        assert "Revenue grew" in result["description"]

        other = FileUploadContext("c1", "p1", "notes.txt", str(path), "text/plain", 9)
        assert await pdf_document.describe_upload(other) is None
