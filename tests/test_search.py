import pytest

from resumedb.pipelines.search import ResumeSearchFilters, escape_like, list_filters, search_resumes


@pytest.fixture
async def seeded(make_resume):
    alice = await make_resume(
        name="Alice Chen",
        major="Computer Science",
        graduation_year="2025",
        companies=["Google", "NVIDIA"],
        keywords=["Python", "CUDA"],
    )
    bob = await make_resume(
        name="Bob Patel",
        major="Electrical Engineering",
        graduation_year="2026",
        companies=["Texas Instruments"],
        keywords=["FPGA", "Verilog"],
    )
    carol = await make_resume(
        name="Carol Diaz",
        major="Industrial Engineering",
        graduation_year="2024",
        companies=["Delta Air Lines"],
        keywords=["Python", "SQL"],
    )
    gone = await make_resume(
        name="Dan Gone",
        major="Computer Science",
        graduation_year="2025",
        companies=["Google"],
        keywords=["Go"],
        is_active=False,
    )
    return {"alice": alice, "bob": bob, "carol": carol, "gone": gone}


async def names(session, blob_store, **filters):
    views = await search_resumes(session, blob_store, ResumeSearchFilters(**filters))
    return sorted(view.name for view in views)


async def test_no_filters_returns_active_newest_first(session, blob_store, seeded):
    views = await search_resumes(session, blob_store, ResumeSearchFilters())
    assert [v.name for v in views] == ["Carol Diaz", "Bob Patel", "Alice Chen"]


async def test_free_text_query_covers_all_fields(session, blob_store, seeded):
    assert await names(session, blob_store, query="alice") == ["Alice Chen"]
    assert await names(session, blob_store, query="engineering") == ["Bob Patel", "Carol Diaz"]
    assert await names(session, blob_store, query="2026") == ["Bob Patel"]
    assert await names(session, blob_store, query="nvid") == ["Alice Chen"]
    assert await names(session, blob_store, query="verilog") == ["Bob Patel"]


async def test_major_filter_is_comma_or(session, blob_store, seeded):
    assert await names(session, blob_store, major="computer, industrial") == ["Alice Chen", "Carol Diaz"]


async def test_graduation_year_filter_is_exact(session, blob_store, seeded):
    assert await names(session, blob_store, graduation_year="2024,2026") == ["Bob Patel", "Carol Diaz"]
    assert await names(session, blob_store, graduation_year="202") == []


async def test_company_and_keyword_filters(session, blob_store, seeded):
    assert await names(session, blob_store, company="google") == ["Alice Chen"]
    assert await names(session, blob_store, keyword="python") == ["Alice Chen", "Carol Diaz"]
    assert await names(session, blob_store, keyword="python", company="delta") == ["Carol Diaz"]


async def test_unknown_company_returns_empty(session, blob_store, seeded):
    assert await names(session, blob_store, company="Initech") == []
    assert await names(session, blob_store, keyword="COBOL") == []


async def test_like_wildcards_are_literal(session, blob_store, seeded):
    assert await names(session, blob_store, name="%") == []
    assert escape_like("100%_a\\b") == "100\\%\\_a\\\\b"


async def test_results_carry_signed_urls(session, blob_store, seeded):
    views = await search_resumes(session, blob_store, ResumeSearchFilters(name="alice"), signed_url_ttl=60)
    view = views[0]
    assert view.signed_pdf_url == f"memory://{view.storage_key}?ttl=60"
    assert sorted(view.companies) == ["Google", "NVIDIA"]


async def test_signing_failure_yields_none(session, blob_store, seeded):
    blob_store.fail_sign = True
    views = await search_resumes(session, blob_store, ResumeSearchFilters())
    assert len(views) == 3
    assert all(view.signed_pdf_url is None for view in views)


async def test_list_filters_only_reflects_active_resumes(session, seeded):
    options = await list_filters(session)
    assert options.majors == ["Computer Science", "Electrical Engineering", "Industrial Engineering"]
    assert options.graduation_years == ["2024", "2025", "2026"]
    assert options.companies == ["Delta Air Lines", "Google", "NVIDIA", "Texas Instruments"]
    assert "Go" not in options.keywords
    assert options.keywords == ["CUDA", "FPGA", "Python", "SQL", "Verilog"]
