import pytest

from app.ai_feature.guard import FORBIDDEN_KEYWORDS, normalize, validate_query
from app.core.exceptions import QueryRejected


def test_drop_table_is_rejected_naming_the_keyword():
    with pytest.raises(QueryRejected) as excinfo:
        validate_query("DROP TABLE users")

    assert excinfo.value.keyword == "DROP"
    assert "DROP" in str(excinfo.value)


@pytest.mark.parametrize(
    "query, keyword",
    [
        ("drop table users", "DROP"),
        ("DeLeTe FROM cards WHERE id = 1", "DELETE"),
        ("insert into cards values (1)", "INSERT"),
        ("   Update cards set name = 'x'", "UPDATE"),
        ("truncate promotions", "TRUNCATE"),
        ("alter table cards add column x int", "ALTER"),
        ("create table t (id int)", "CREATE"),
        ("grant all on cards to bob", "GRANT"),
        ("revoke all on cards from bob", "REVOKE"),
        ("execute get_deals(1)", "EXECUTE"),
        ("SELECT 1; exec sp_who", "EXEC"),
    ],
)
def test_denylisted_keywords_rejected_in_any_casing(query, keyword):
    with pytest.raises(QueryRejected) as excinfo:
        validate_query(query)
    assert excinfo.value.keyword == keyword


def test_exec_at_end_of_statement_is_caught():
    with pytest.raises(QueryRejected):
        validate_query("select 1; EXEC")


def test_exec_split_by_newlines_is_caught():
    with pytest.raises(QueryRejected):
        validate_query("EXEC\n\t  sp_who")


@pytest.mark.parametrize(
    "query",
    [
        "SELECT * FROM get_nearby_deals(10.77, 106.70)",
        "select name, cashback_rate from bank_programs where bank = 'VIB'",
        "  SELECT count(*) FROM merchants  ",
    ],
)
def test_plain_selects_pass(query):
    validate_query(query)


def test_substring_match_rejects_identifiers_containing_keywords():
    # created_at contains CREATE; the guard is deliberately coarse
    with pytest.raises(QueryRejected) as excinfo:
        validate_query("SELECT created_at FROM cards")
    assert excinfo.value.keyword == "CREATE"


def test_empty_query_rejected():
    with pytest.raises(QueryRejected):
        validate_query("   \n ")


def test_normalize_collapses_whitespace_and_uppercases():
    assert normalize("  select\n\t*  from x ") == "SELECT * FROM X"


def test_denylist_covers_mutating_and_ddl_keywords():
    assert {"INSERT", "UPDATE", "DELETE", "DROP", "ALTER", "TRUNCATE", "CREATE", "GRANT", "REVOKE"} <= {
        keyword.strip() for keyword in FORBIDDEN_KEYWORDS
    }
