from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select as sa_select

from mmda_revenue.db.session import get_session
from mmda_revenue.models.models import User
from mmda_revenue.services import auth as auth_service
from mmda_revenue.redis_client import redis_client
from mmda_revenue.config import settings

router = APIRouter(tags=["auth"])


class RegisterIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    full_name: Optional[str] = None
    phone: Optional[str] = None


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


@router.post("/register", status_code=201)
async def register(payload: RegisterIn, db: AsyncSession = Depends(get_session)):
    email = payload.email.lower()
    stmt = sa_select(User).where(User.email == email)
    res = await db.execute(stmt)
    if res.scalars().first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")
    # self-registration always creates taxpayers; staff accounts are provisioned by admins
    user = User(
        email=email,
        full_name=payload.full_name,
        phone=payload.phone,
        hashed_password=auth_service.hash_password(payload.password),
        role="taxpayer",
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return {"id": user.id, "email": user.email, "full_name": user.full_name, "role": user.role}


@router.post("/login", response_model=TokenOut)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: AsyncSession = Depends(get_session)):
    identifier = form_data.username.lower()
    rl_key = f"rl:login:{identifier}"
    attempts = await redis_client.get(rl_key)
    if attempts and int(attempts) >= settings.LOGIN_RATE_LIMIT_ATTEMPTS:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Too many login attempts, try later")

    stmt = sa_select(User).where(User.email == identifier)
    res = await db.execute(stmt)
    user = res.scalars().first()
    if not user or not auth_service.verify_password(form_data.password, user.hashed_password):
        await redis_client.incr(rl_key)
        await redis_client.expire(rl_key, settings.LOGIN_RATE_LIMIT_WINDOW_SECONDS)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    await redis_client.delete(rl_key)
    return {"access_token": auth_service.create_access_token(user.id)}
