REDIS_SIGNALS_KEY = "signals:{slug}" # room id - list of queued signal envelopes (JSON)

# **`signals:{roomId}` list**
# - RPUSH on POST /signal, so LRANGE 0 -1 reads oldest first
# - drained (read + DEL) inside one WATCH/MULTI transaction on GET /signal
# - TTL refreshed on every push, abandoned rooms disappear on their own
