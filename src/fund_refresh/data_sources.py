from __future__ import annotations

import datetime as dt
import json
import re
import time
from html import unescape
from typing import Iterable
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import ProxyHandler, Request, build_opener, install_opener, urlopen

from .errors import NetworkError, NotFoundError, ParseError
from .models import FundDetail, FundValuation, Holding, Quote, to_float

REQUEST_TIMEOUT = 12
UA = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


def configure_proxy(proxy_url: str | None) -> None:
    """Configure process-wide HTTP(S) proxy for urllib.

    Example: http://127.0.0.1:7890 or socks5://127.0.0.1:1080
    """
    if not proxy_url:
        return
    parsed = urlparse(proxy_url)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"无效代理地址: {proxy_url}")

    opener = build_opener()
    opener.add_handler(ProxyHandler({"http": proxy_url, "https": proxy_url}))
    install_opener(opener)


def _http_get(url: str, referer: str | None = None) -> str:
    headers = {"User-Agent": UA, "Cache-Control": "no-cache", "Pragma": "no-cache"}
    if referer:
        headers["Referer"] = referer
    req = Request(url, headers=headers)
    try:
        with urlopen(req, timeout=REQUEST_TIMEOUT) as resp:
            return resp.read().decode("utf-8", errors="ignore")
    except HTTPError as exc:
        if exc.code == 404:
            raise NotFoundError(f"资源未找到: {url}") from exc
        raise NetworkError(f"HTTP请求失败: {url} -> {exc}", exc) from exc
    except (URLError, TimeoutError, ConnectionError) as exc:
        raise NetworkError(f"HTTP请求失败: {url} -> {exc}", exc) from exc


def _fetch_fundgz(fund_code: str) -> dict:
    # rt busts intermediate caches
    url = f"https://fundgz.1234567.com.cn/js/{fund_code}.js?rt={int(time.time() * 1000)}"
    text = _http_get(url, referer="https://fund.eastmoney.com/")
    return parse_fundgz_payload(fund_code, text)


def parse_fundgz_payload(fund_code: str, text: str) -> dict:
    m = re.search(r"jsonpgz\((\{.*\})\)", text, flags=re.S)
    if not m:
        # fundgz answers unknown codes with an empty "jsonpgz();"
        if "jsonpgz()" in text.replace(" ", ""):
            raise NotFoundError(f"未找到基金: {fund_code}")
        raise ParseError(f"无法解析基金估值数据: {fund_code}")
    try:
        return json.loads(m.group(1))
    except json.JSONDecodeError as exc:
        raise ParseError(f"无法解析基金估值数据: {fund_code}", exc) from exc


def valuation_from_payload(
    fund_code: str,
    payload: dict,
    today: dt.date | None = None,
) -> FundValuation:
    today_str = (today or dt.date.today()).isoformat()
    net_value_date = str(payload.get("jzrq") or "")
    gztime = str(payload.get("gztime") or "")
    # Net value dated today means the official figure is already published.
    is_real_value = net_value_date == today_str
    net_value = to_float(payload.get("dwjz"))
    return FundValuation(
        fund_code=str(payload.get("fundcode") or fund_code),
        name=str(payload.get("name") or ""),
        net_value=net_value,
        net_value_date=net_value_date,
        estimated_value=net_value if is_real_value else to_float(payload.get("gsz")),
        estimated_change=to_float(payload.get("gszzl")),
        update_time=gztime or dt.datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        is_real_value=is_real_value,
        is_trading_day=gztime.startswith(today_str),
    )


def fetch_fund_valuation(fund_code: str) -> FundValuation:
    return valuation_from_payload(fund_code, _fetch_fundgz(fund_code))


def fetch_fund_detail(fund_code: str, topn: int = 10) -> FundDetail:
    payload = _fetch_fundgz(fund_code)
    holdings = fetch_fund_holdings(fund_code, topn=topn)
    return FundDetail(
        code=str(payload.get("fundcode") or fund_code),
        name=str(payload.get("name") or ""),
        net_value=to_float(payload.get("dwjz")),
        net_value_date=str(payload.get("jzrq") or dt.date.today().isoformat()),
        holdings=holdings,
    )


def fetch_fund_holdings(fund_code: str, topn: int = 10) -> list[Holding]:
    url = (
        "https://fundf10.eastmoney.com/FundArchivesDatas.aspx"
        f"?type=jjcc&code={fund_code}&topline={topn}&year=&month="
    )
    text = _http_get(url, referer=f"https://fundf10.eastmoney.com/ccmx_{fund_code}.html")
    return parse_holdings(text, topn=topn)


def parse_holdings(text: str, topn: int = 10) -> list[Holding]:
    m = re.search(r"content:\"(.*)\",arryear", text, flags=re.S)
    if not m:
        return []

    html = unescape(m.group(1)).replace("\\/", "/")
    # The newest quarter comes first; later tables repeat older quarters.
    html = html.split("</table>", 1)[0]
    rows = re.findall(r"<tr>(.*?)</tr>", html, flags=re.S)

    holdings: list[Holding] = []
    for row in rows:
        tds = re.findall(r"<td[^>]*>(.*?)</td>", row, flags=re.S)
        if len(tds) < 7:
            continue
        code = _clean_html_text(tds[1])
        name = _clean_html_text(tds[2])
        ratio_text = _clean_html_text(tds[6]).replace("%", "")
        if not code:
            continue
        try:
            ratio = float(ratio_text)
        except ValueError:
            continue
        holdings.append(Holding(stock_code=code, stock_name=name, ratio=ratio))
        if len(holdings) >= topn:
            break
    return holdings


def _clean_html_text(s: str) -> str:
    s = re.sub(r"<[^>]+>", "", s)
    return unescape(s).strip()


def _to_sina_symbol(code: str) -> str | None:
    c = code.strip().upper()
    if not c:
        return None

    if re.fullmatch(r"\d{6}", c):
        if c.startswith(("5", "6", "9")):
            return f"sh{c}"
        if c.startswith(("4", "8")):
            return f"bj{c}"
        return f"sz{c}"

    if re.fullmatch(r"\d{5}", c):
        return f"hk{c}"

    if re.fullmatch(r"[A-Z]{1,5}", c):
        return f"us{c}"

    if c.startswith(("SH", "SZ", "BJ", "HK", "US")) and len(c) > 2:
        return c[:2].lower() + c[2:]

    return None


def fetch_stock_quotes(raw_codes: Iterable[str]) -> list[Quote]:
    symbol_pairs: list[tuple[str, str]] = []
    for code in raw_codes:
        symbol = _to_sina_symbol(code)
        if symbol:
            symbol_pairs.append((code, symbol))

    if not symbol_pairs:
        return []

    symbols = ",".join(sym for _, sym in symbol_pairs)
    url = f"https://hq.sinajs.cn/list={symbols}"
    text = _http_get(url, referer="https://finance.sina.com.cn")
    by_symbol = parse_sina_response(text)

    quotes: list[Quote] = []
    for raw, symbol in symbol_pairs:
        parsed = by_symbol.get(symbol)
        if parsed is None:
            continue
        name, price, change, change_amount = parsed
        quotes.append(
            Quote(code=raw, name=name, price=price, change=change, change_amount=change_amount)
        )
    return quotes


def parse_sina_response(text: str) -> dict[str, tuple[str, float, float, float]]:
    by_symbol: dict[str, tuple[str, float, float, float]] = {}
    for line in text.splitlines():
        if '="";' in line:
            continue
        lhs_rhs = line.split("=", 1)
        if len(lhs_rhs) != 2:
            continue
        lhs, rhs = lhs_rhs
        m = re.search(r"hq_str_(\w+)", lhs)
        if not m:
            continue
        symbol = m.group(1)
        data = rhs.strip().strip('";')
        fields = data.split(",")
        parsed = _parse_sina_quote(symbol, fields)
        if parsed is not None:
            by_symbol[symbol] = parsed
    return by_symbol


def _parse_sina_quote(symbol: str, fields: list[str]) -> tuple[str, float, float, float] | None:
    """Return ``(name, price, change %, change amount)`` for one hq line."""
    try:
        if symbol.startswith(("sh", "sz", "bj")):
            name = fields[0]
            prev_close = float(fields[2])
            price = float(fields[3])
        elif symbol.startswith("hk"):
            name = fields[1]
            prev_close = float(fields[3])
            price = float(fields[6])
        elif symbol.startswith("us"):
            name = fields[0]
            price = float(fields[1])
            prev_close = float(fields[26])
        else:
            return None
    except (ValueError, IndexError):
        return None

    if prev_close == 0:
        return None
    # Suspended A-shares report a zero last price before the open.
    if price == 0:
        price = prev_close
    change_amount = price - prev_close
    return name, price, (price / prev_close - 1.0) * 100, change_amount
