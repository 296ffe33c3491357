from sqlmodel import SQLModel, Field


class CartAddRequest(SQLModel):
    product_id: int
    quantity: int = Field(default=1, ge=1)


class CartUpdateRequest(SQLModel):
    # 0 removes the line
    quantity: int = Field(ge=0)
