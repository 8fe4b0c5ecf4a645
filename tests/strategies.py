"""
Hypothesis strategies for EdgeLog property-based testing.

These strategies generate log records and backoff settings.
"""

from hypothesis import strategies as st

# =============================================================================
# Record Strategies
# =============================================================================

# JSON scalars that survive an encode/decode round trip unchanged
json_scalars = st.one_of(
    st.none(),
    st.booleans(),
    st.integers(min_value=-(2**53), max_value=2**53),
    st.floats(allow_nan=False, allow_infinity=False),
    st.text(max_size=50),
)

json_values = st.recursive(
    json_scalars,
    lambda children: st.one_of(
        st.lists(children, max_size=4),
        st.dictionaries(st.text(max_size=10), children, max_size=4),
    ),
    max_leaves=10,
)

# Opaque records: arbitrary string-keyed mappings
records = st.dictionaries(st.text(max_size=20), json_values, max_size=8)

record_batches = st.lists(records, min_size=1, max_size=20)

# Edge request records as produced by the proxy
http_methods = st.sampled_from(["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"])
edge_records = st.fixed_dictionaries({
    "ClientIP": st.ip_addresses().map(str),
    "ClientRequestMethod": http_methods,
    "ClientRequestURI": st.from_regex(r"/[a-z0-9/]{0,30}", fullmatch=True),
    "EdgeResponseStatus": st.integers(min_value=100, max_value=599),
})

# =============================================================================
# Backoff Strategies
# =============================================================================

backoff_bases = st.integers(min_value=1, max_value=10_000)

# (base, max) pairs with max >= base
backoff_settings = backoff_bases.flatmap(
    lambda base: st.tuples(st.just(base), st.integers(min_value=base, max_value=base * 64))
)

failure_counts = st.integers(min_value=1, max_value=12)

jitter_seeds = st.integers(min_value=0, max_value=2**32 - 1)
