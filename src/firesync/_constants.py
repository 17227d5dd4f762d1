"""Internal constants shared across the library."""

#: Key carrying a node's ordering priority in export-format values.
PRIORITY_KEY = ".priority"

#: Key wrapping a scalar value that carries a priority in export format.
VALUE_KEY = ".value"

#: Default attribute holding a record identifier.
ID_ATTRIBUTE = "id"

USER_AGENT = "firesync/0.4"

# ------------------------------------------------------------------
# Push id alphabet (ASCII ordered so ids sort chronologically)
# ------------------------------------------------------------------

PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"
PUSH_ID_TIME_CHARS = 8
PUSH_ID_RANDOM_CHARS = 12
