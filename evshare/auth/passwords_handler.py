import bcrypt
import asyncio
from concurrent.futures import ThreadPoolExecutor

# bcrypt is CPU bound, keep it off the event loop
_executor = ThreadPoolExecutor(max_workers=4)


async def hash_password_async(password: str) -> str:
    loop = asyncio.get_running_loop()
    salt = await loop.run_in_executor(_executor, bcrypt.gensalt, 12)
    hashed_password = await loop.run_in_executor(
        _executor, bcrypt.hashpw, password.encode('utf-8'), salt
    )
    return hashed_password.decode('utf-8')


async def verify_password_async(password: str, hashed_password: str) -> bool:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        _executor, bcrypt.checkpw, password.encode('utf-8'), hashed_password.encode('utf-8')
    )
