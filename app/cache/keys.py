from app.models.rating import RatingScope

PUBLIC_RATINGS_PREFIX = "public:ratings"
USER_RATING_PREFIX = "user:rating:"


def ratings_page_key(scope: RatingScope, page: int, page_size: int) -> str:
    return f"{PUBLIC_RATINGS_PREFIX}:{scope.key}:p{page}:s{page_size}"


def user_rating_key(user_id: str) -> str:
    return f"{USER_RATING_PREFIX}{user_id}"


def user_achievements_prefix(user_id: str) -> str:
    return f"user:achievements:{user_id}"
