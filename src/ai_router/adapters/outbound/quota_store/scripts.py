"""Lua scripts executed atomically inside Redis.

Each script is the whole read-check-write for one operation, so racing
router instances can never interleave between a check and its update.
"""

from __future__ import annotations

# KEYS: day, rate, leases, cooldown, block, disabled
# ARGV: now_ms, budget_requests, budget_tokens, rate_capacity, rate_ttl_ms,
#       max_concurrency, lease_token, lease_ttl_ms
# Returns {granted(0|1), reason}
TRY_RESERVE = """
local now = tonumber(ARGV[1])

if redis.call('EXISTS', KEYS[6]) == 1 then
    return {0, 'disabled'}
end
if tonumber(redis.call('GET', KEYS[5]) or '0') > now then
    return {0, 'block'}
end
if tonumber(redis.call('GET', KEYS[4]) or '0') > now then
    return {0, 'cooldown'}
end

redis.call('ZREMRANGEBYSCORE', KEYS[3], '-inf', now)
local in_flight = redis.call('ZCARD', KEYS[3])

local requests = tonumber(redis.call('HGET', KEYS[1], 'requests') or '0')
local tokens = tonumber(redis.call('HGET', KEYS[1], 'tokens') or '0')
if requests + in_flight >= tonumber(ARGV[2]) or tokens >= tonumber(ARGV[3]) then
    return {0, 'budget'}
end

if tonumber(redis.call('GET', KEYS[2]) or '0') >= tonumber(ARGV[4]) then
    return {0, 'rate'}
end

if in_flight >= tonumber(ARGV[6]) then
    return {0, 'concurrency'}
end

redis.call('INCR', KEYS[2])
redis.call('PEXPIRE', KEYS[2], ARGV[5])
redis.call('ZADD', KEYS[3], now + tonumber(ARGV[8]), ARGV[7])
redis.call('PEXPIRE', KEYS[3], ARGV[8])
return {1, 'granted'}
"""

# KEYS: day, leases, health
# ARGV: lease_token, tokens_used, day_ttl_s
COMMIT = """
redis.call('ZREM', KEYS[2], ARGV[1])
redis.call('HINCRBY', KEYS[1], 'requests', 1)
redis.call('HINCRBY', KEYS[1], 'tokens', tonumber(ARGV[2]))
redis.call('EXPIRE', KEYS[1], tonumber(ARGV[3]))

if tonumber(redis.call('GET', KEYS[3]) or '0') > 0 then
    redis.call('DECR', KEYS[3])
end
return redis.call('HGET', KEYS[1], 'requests')
"""

# KEYS: cooldown, block, disabled, health
# ARGV: action, now_ms, duration_ms, health_window_ms
# Deadlines only ever move forward.
APPLY_FAILURE = """
local action = ARGV[1]
local now = tonumber(ARGV[2])
local duration = tonumber(ARGV[3])

if (action == 'cooldown' or action == 'block') and duration > 0 then
    local key = KEYS[1]
    if action == 'block' then
        key = KEYS[2]
    end
    local deadline = now + duration
    if deadline > tonumber(redis.call('GET', key) or '0') then
        redis.call('SET', key, deadline, 'PX', duration)
    end
elseif action == 'disable' then
    redis.call('SET', KEYS[3], now)
end

local tally = redis.call('INCR', KEYS[4])
redis.call('PEXPIRE', KEYS[4], ARGV[4])
return tally
"""
