from typing import Optional
from pydantic import BaseModel, Field


class UserProfile(BaseModel):
    """Datos públicos del usuario para mostrar en el leaderboard"""

    id: str = Field(..., alias="_id")
    name: Optional[str] = None
    username: Optional[str] = None
    profile_picture: Optional[str] = None

    class Config:
        populate_by_name = True

    @property
    def display_name(self) -> str:
        if self.name and self.name.strip():
            return self.name.strip()
        if self.username and self.username.strip():
            return f"@{self.username.strip()}"
        return f"Player #{self.id}"
