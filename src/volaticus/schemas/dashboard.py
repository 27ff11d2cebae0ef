from pydantic import BaseModel


class DashboardStats(BaseModel):
    total_urls: int
    total_clicks: int
    total_files: int
    total_storage: int

    class Config:
        from_attributes = True
