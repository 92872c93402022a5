# Reciprocal Rank Fusion smoothing constant (Cormack et al., 2009).
# Larger values flatten the gap between adjacent ranks.
RRF_K = 60

# Over-fetch per strategy before fusion: each strategy is asked for
# min(limit * OVERFETCH_FACTOR, MAX_RANKING_LIMIT) candidates.
OVERFETCH_FACTOR = 3
MAX_RANKING_LIMIT = 100

DEFAULT_LIMIT = 20

# Seconds.
STRATEGY_TIMEOUT = 2.0
FANOUT_DEADLINE = 5.0
RESULT_CACHE_TTL = 300
RESULT_CACHE_CAPACITY = 10_000
TRENDING_REFRESH_INTERVAL = 3600

# MMR trade-off; biased toward relevance.
DIVERSITY_LAMBDA = 0.85

# Reasoning phrases: a secondary reason is added when it carries more than
# this share of the fused score.
SECONDARY_REASON_SHARE = 0.20

CONTEXT_HISTORY_CAP = 20
CONTEXT_SCORE_DECAY = 0.05

# Content up to 10% longer than the viewer's available time is still kept.
AVAILABLE_TIME_TOLERANCE = 1.1
# Each matching mood genre multiplies the score by sqrt(MOOD_ALIGNMENT_BOOST).
MOOD_ALIGNMENT_BOOST = 1.6
MOOD_GENRES: dict[str, frozenset[str]] = {
    "happy": frozenset({"comedy", "romance", "animation", "family"}),
    "sad": frozenset({"drama", "romance"}),
    "excited": frozenset({"action", "thriller", "adventure", "science fiction"}),
    "relaxed": frozenset({"documentary", "drama", "family"}),
    "stressed": frozenset({"comedy", "animation", "family"}),
    "bored": frozenset({"action", "adventure", "thriller", "science fiction"}),
    "romantic": frozenset({"romance", "drama", "comedy"}),
    "curious": frozenset({"documentary", "science fiction", "mystery", "history"}),
    "scared": frozenset({"horror", "thriller"}),
    "nostalgic": frozenset({"drama", "family", "animation"}),
    "adventurous": frozenset({"adventure", "action", "science fiction", "fantasy"}),
    "thoughtful": frozenset({"documentary", "drama", "history"}),
    "energetic": frozenset({"action", "music", "adventure"}),
    "lonely": frozenset({"romance", "comedy", "drama"}),
    "angry": frozenset({"action", "thriller", "crime"}),
}

COLLABORATIVE_NEIGHBOUR_LIMIT = 10
COLLABORATIVE_MIN_SIMILARITY = 0.1

COLLABORATIVE_FILTERING = "collaborative_filtering"
CONTENT_BASED = "content_based"
TRENDING = "trending"
CONTEXT_AWARE = "context_aware"

DEFAULT_STRATEGY_WEIGHTS: dict[str, float] = {
    COLLABORATIVE_FILTERING: 0.35,
    CONTENT_BASED: 0.25,
    TRENDING: 0.20,
    CONTEXT_AWARE: 0.20,
}
