"""Redis Lua scripts for the shared counter store.

These scripts run as single atomic server-side operations so that no
concurrent caller can observe or interleave with an intermediate state.
"""

# Increment a counter and attach its expiry in one step.
# The expiry is set when the key is created, and repaired if the key somehow
# exists without one, so a counter can never live forever.
INCREMENT_WITH_EXPIRY_SCRIPT = """
    local key = KEYS[1]
    local ttl = tonumber(ARGV[1])

    local count = redis.call('INCR', key)
    if count == 1 or redis.call('TTL', key) < 0 then
        redis.call('EXPIRE', key, ttl)
    end
    return count
"""

# Distributed atomic window: compute bucket -> increment -> set TTL -> compare
# -> decide, all inside one script. The bucket key is derived from KEYS[1],
# which carries the identifier hash tag, so it lands in the same cluster slot.
# Returns {new_count, remaining, reset_time_ms, limited}.
ATOMIC_WINDOW_SCRIPT = """
    local base_key = KEYS[1]
    local window_ms = tonumber(ARGV[1])
    local max_requests = tonumber(ARGV[2])
    local now_ms = tonumber(ARGV[3])

    local bucket = math.floor(now_ms / window_ms) * window_ms
    local key = base_key .. ':' .. string.format('%d', bucket)

    local count = redis.call('INCR', key)
    if count == 1 or redis.call('PTTL', key) < 0 then
        redis.call('PEXPIRE', key, window_ms)
    end

    local remaining = max_requests - count
    if remaining < 0 then
        remaining = 0
    end

    local limited = 0
    if count > max_requests then
        limited = 1
    end

    return {count, remaining, bucket + window_ms, limited}
"""
