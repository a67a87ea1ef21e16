"""FanFiction.net archival export service.

This package fetches stories and private documents from FanFiction.net
and packages them for offline keeping: whole stories as EPUB 2 books,
single documents as Markdown, and many documents as one zip archive.

The modules in this package are:

* ``locator.py`` - Semantic lookup of page regions (story text, title,
  chapter list, document table) so no other module hard-codes selectors.

* ``extractor.py`` - Single-request page fetching with ``httpx``.

* ``scheduler.py`` - Paced, two-pass fetching. Every item gets one
  attempt; failures get one more after a cooldown.

* ``metadata.py`` - Turns the story's ``Rated: T - English - ...`` line
  into structured fields and finds the largest available cover image.

* ``sanitizer.py`` - Re-serialises fetched HTML as well-formed XHTML, or
  converts it to Markdown.

* ``epub.py`` and ``archive.py`` - Build the EPUB and zip packages.

* ``orchestrator.py`` - Export jobs: state, counters, cancellation and
  the wiring between all of the above.

* ``fichub.py`` - Checks whether FicHub's cached copy of a story is up to
  date.

* ``main.py`` - The FastAPI application and its job status page.
"""
