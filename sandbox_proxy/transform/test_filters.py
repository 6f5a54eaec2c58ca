from sandbox_proxy.transform import (
    filter_ads,
    inject_security_meta,
    remove_trackers,
    sanitize,
    security_headers,
    upgrade_insecure,
)

AD_PAGE = """<html><head>
<script src="https://pagead2.googlesyndication.com/pagead/js/adsbygoogle.js"></script>
<script src="/static/app.js"></script>
</head><body>
<div class="ad-banner">Buy now</div>
<div class="content">Article text</div>
<div class="sidebar advertisement-slot">Sponsored</div>
<ins class="adsbygoogle"></ins>
<iframe src="https://ad.doubleclick.net/frame"></iframe>
<img src="https://example.com/photo.jpg">
</body></html>"""


def test_filter_ads_removes_ad_elements():
    out = filter_ads(AD_PAGE)

    assert "googlesyndication" not in out
    assert "Buy now" not in out
    assert "Sponsored" not in out
    assert "adsbygoogle" not in out
    assert "doubleclick" not in out


def test_filter_ads_keeps_content():
    out = filter_ads(AD_PAGE)

    assert "Article text" in out
    assert "/static/app.js" in out
    assert "https://example.com/photo.jpg" in out


def test_filter_ads_returns_clean_input_unchanged():
    html = "<p class='adjacent'>Nothing   to see</p>"

    assert filter_ads(html) == html


def test_filter_ads_tolerates_empty_input():
    assert filter_ads("") == ""


def test_remove_trackers():
    html = """<head>
<script async src="https://www.googletagmanager.com/gtag/js?id=G-1"></script>
<script>window.dataLayer = []; function gtag(){dataLayer.push(arguments);} gtag('js', new Date());</script>
<script>console.log("app")</script>
<script src="https://static.hotjar.com/c/hotjar.js"></script>
</head><body>
<noscript><img src="https://www.facebook.com/tr?id=1&ev=PageView"></noscript>
<img src="https://example.com/logo.png">
</body>"""

    out = remove_trackers(html)

    assert "googletagmanager" not in out
    assert "dataLayer" not in out
    assert "hotjar" not in out
    assert "facebook.com/tr" not in out
    assert 'console.log("app")' in out
    assert "logo.png" in out


def test_sanitize_strips_handlers_and_dangerous_scripts():
    html = (
        '<body onload="steal()"><a href="/x" onclick="track()" onmouseover="x()">link</a>'
        "<script>eval(atob('ZG9j'))</script>"
        "<script>document.write('<p>hi</p>')</script>"
        "<script>var safe = 1;</script>"
        '<script src="/lib.js"></script></body>'
    )

    out = sanitize(html)

    assert "onload" not in out
    assert "onclick" not in out
    assert "onmouseover" not in out
    assert "eval(" not in out
    assert "document.write" not in out
    assert "var safe = 1;" in out
    assert '<script src="/lib.js"></script>' in out
    assert ">link</a>" in out


def test_upgrade_insecure():
    html = '<a href="http://example.com/a">a</a><img src="HTTP://example.com/b.png"><a href="https://ok.example/">ok</a>'

    out = upgrade_insecure(html)

    assert 'href="https://example.com/a"' in out
    assert 'src="https://example.com/b.png"' in out
    assert "http://" not in out.lower()


def test_security_headers():
    headers = security_headers()

    assert headers["X-Content-Type-Options"] == "nosniff"
    assert headers["X-Frame-Options"] == "SAMEORIGIN"
    assert headers["Referrer-Policy"] == "no-referrer"
    assert "object-src 'none'" in headers["Content-Security-Policy"]
    assert headers["Strict-Transport-Security"].startswith("max-age=31536000")
    assert "Strict-Transport-Security" not in security_headers(https=False)


def test_inject_security_meta_is_idempotent():
    html = "<html><head><title>T</title></head><body></body></html>"

    once = inject_security_meta(html)

    assert 'content="noindex, nofollow"' in once
    assert once.count("Content-Security-Policy") == 1
    assert inject_security_meta(once) == once
