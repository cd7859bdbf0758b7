from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from evshare.auth.auth_handler import sign_jwt
from evshare.auth.passwords_handler import hash_password_async, verify_password_async
from evshare.auth.rbac import Role
from evshare.core.db import get_db
from evshare.models.user import User
from evshare.schemas.user import TokenOut, UserLoginSchema, UserSchema

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", status_code=status.HTTP_201_CREATED, response_model=TokenOut)
async def register_user(user: UserSchema, db: AsyncSession = Depends(get_db)):
    existing_user = (await db.execute(select(User).where(User.email == user.email))).scalar_one_or_none()
    if existing_user:
        raise HTTPException(status_code=400, detail="User already exists.")

    hashed_password = await hash_password_async(user.password)

    new_user = User(
        email=user.email,
        fullname=user.fullname,
        password=hashed_password,
        role=Role.CO_OWNER.value,
    )
    db.add(new_user)

    try:
        await db.commit()
    except IntegrityError:
        # another request registered the same email first
        await db.rollback()
        raise HTTPException(status_code=409, detail="Email already registered.")

    return sign_jwt(new_user.id, new_user.role)


@router.post("/login", response_model=TokenOut)
async def login_user(user: UserLoginSchema, db: AsyncSession = Depends(get_db)):
    existing_user = (await db.execute(select(User).where(User.email == user.email))).scalar_one_or_none()
    if not existing_user:
        raise HTTPException(status_code=404, detail="User not found.")

    password_valid = await verify_password_async(user.password, existing_user.password)
    if not password_valid:
        raise HTTPException(status_code=401, detail="Invalid password.")

    return sign_jwt(existing_user.id, existing_user.role)
