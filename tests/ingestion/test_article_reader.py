from ingestion.services.article_reader import article_text, main_content_html

PAGE = """
<html><head><style>body { color: red; }</style><script>track()</script></head>
<body>
  <nav>Home Shop</nav>
  <article>
    <h1>New Figment Popcorn Bucket</h1>
    <p>The   bucket arrives at EPCOT on Friday.</p>
    <div class="related-posts"><p>Loungefly Backpack Sells Out</p></div>
    <div class="ad">Buy tickets</div>
  </article>
  <aside>Sidebar plush promo</aside>
  <footer>Copyright</footer>
</body></html>
"""


def test_article_text_keeps_only_main_content():
    text = article_text(PAGE)

    assert text == "New Figment Popcorn Bucket The bucket arrives at EPCOT on Friday."


def test_main_content_falls_back_to_body():
    html = main_content_html("<html><body><p>Plain page</p><footer>x</footer></body></html>")

    assert html.startswith("<body>")
    assert "Plain page" in html
    assert "footer" not in html
