import datetime as dt

import pytest

from fund_refresh.data_sources import (
    _parse_sina_quote,
    _to_sina_symbol,
    parse_fundgz_payload,
    parse_holdings,
    parse_sina_response,
    valuation_from_payload,
)
from fund_refresh.errors import NotFoundError, ParseError


def test_to_sina_symbol():
    assert _to_sina_symbol("600000") == "sh600000"
    assert _to_sina_symbol("000001") == "sz000001"
    assert _to_sina_symbol("300750") == "sz300750"
    assert _to_sina_symbol("830799") == "bj830799"
    assert _to_sina_symbol("00700") == "hk00700"
    assert _to_sina_symbol("AAPL") == "usAAPL"
    assert _to_sina_symbol("") is None


def test_parse_a_share_quote():
    fields = ["浦发银行", "open", "10.00", "10.50"]
    name, price, pct, amount = _parse_sina_quote("sh600000", fields)
    assert name == "浦发银行"
    assert price == 10.5
    assert round(pct, 3) == 5.0
    assert round(amount, 3) == 0.5


def test_parse_hk_quote():
    fields = ["TENCENT", "腾讯控股", "", "200.0", "", "", "210.0"]
    name, price, pct, _ = _parse_sina_quote("hk00700", fields)
    assert name == "腾讯控股"
    assert round(pct, 3) == 5.0


def test_parse_quote_rejects_bad_fields():
    assert _parse_sina_quote("sh600000", ["x", "1", "0", "1"]) is None
    assert _parse_sina_quote("sh600000", ["x"]) is None
    assert _parse_sina_quote("xx1", ["x", "1", "1", "1"]) is None


def test_parse_sina_response_skips_empty_lines():
    text = (
        'var hq_str_sh600519="贵州茅台,1500.00,1500.00,1530.00";\n'
        'var hq_str_sz000000="";\n'
    )
    parsed = parse_sina_response(text)
    assert list(parsed) == ["sh600519"]
    assert round(parsed["sh600519"][2], 3) == 2.0


def test_fundgz_payload_and_valuation_flags():
    text = (
        'jsonpgz({"fundcode":"161725","name":"招商中证白酒","jzrq":"2026-01-04",'
        '"dwjz":"1.2000","gsz":"1.2120","gszzl":"1.00","gztime":"2026-01-05 10:30"});'
    )
    payload = parse_fundgz_payload("161725", text)
    v = valuation_from_payload("161725", payload, today=dt.date(2026, 1, 5))

    assert v.name == "招商中证白酒"
    assert v.is_trading_day is True
    assert v.is_real_value is False
    assert v.estimated_value == pytest.approx(1.212)
    assert v.estimated_change == pytest.approx(1.0)


def test_fundgz_real_value_after_close():
    payload = {"jzrq": "2026-01-05", "dwjz": "1.3", "gsz": "1.25", "gszzl": "bad", "gztime": ""}
    v = valuation_from_payload("1", payload, today=dt.date(2026, 1, 5))

    assert v.is_real_value is True
    assert v.is_trading_day is False
    assert v.estimated_value == pytest.approx(1.3)
    assert v.estimated_change == 0.0


def test_fundgz_errors():
    with pytest.raises(NotFoundError):
        parse_fundgz_payload("999999", "jsonpgz();")
    with pytest.raises(ParseError):
        parse_fundgz_payload("1", "<html>oops</html>")


def test_parse_holdings_first_quarter_only():
    row = (
        "<tr><td>1</td><td><a href='x'>600519</a></td><td class='tol'><a>贵州茅台</a></td>"
        "<td></td><td></td><td></td><td class='tor'>9.50%</td></tr>"
    )
    older = row.replace("9.50%", "8.00%").replace("600519", "000858")
    html = f"<table>{row}</table><table>{older}</table>"
    text = f'var apidata={{ content:"{html}",arryear:[2025],curyear:2025}};'

    holdings = parse_holdings(text)

    assert len(holdings) == 1
    assert holdings[0].stock_code == "600519"
    assert holdings[0].stock_name == "贵州茅台"
    assert holdings[0].ratio == 9.5


def test_parse_holdings_without_content():
    assert parse_holdings("nothing here") == []
