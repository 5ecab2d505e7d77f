"""Tests for crawl context in log output."""

import json
import logging

from catalog_crawler.logging_config import CrawlContextFilter, CustomJsonFormatter, get_logger


def make_record(**extra):
    record = logging.makeLogRecord({
        "name": "catalog_crawler.worker.crawl_loop",
        "levelno": logging.INFO,
        "levelname": "INFO",
        "msg": "page done",
    })
    record.__dict__.update(extra)
    return record


def test_json_output_carries_category_and_page():
    formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")

    payload = json.loads(formatter.format(make_record(category="Móveis", page=4)))

    assert payload["category"] == "Móveis"
    assert payload["page"] == 4
    assert payload["level"] == "INFO"
    assert payload["message"] == "page done"


def test_json_output_omits_missing_context():
    formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")

    payload = json.loads(formatter.format(make_record()))

    assert "category" not in payload
    assert "page" not in payload


def test_console_prefix():
    context_filter = CrawlContextFilter()

    with_page = make_record(category="Iluminação", page=2)
    bare = make_record()
    context_filter.filter(with_page)
    context_filter.filter(bare)

    assert with_page.context == "[Iluminação p.2] "
    assert bare.context == ""


def test_adapter_merges_call_extra(caplog):
    log = get_logger("catalog_crawler.tests", category="Tapetes")

    with caplog.at_level(logging.INFO, logger="catalog_crawler.tests"):
        log.info("page done", extra={"page": 7})

    record = caplog.records[-1]
    assert record.category == "Tapetes"
    assert record.page == 7
