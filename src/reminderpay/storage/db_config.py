from pathlib import Path

import aiosqlite

from reminderpay.logger import logger

_SQL_DIR = Path(__file__).with_name("sql")
SCHEMA_VERSION = 1


async def open_db(db_path: str) -> aiosqlite.Connection:
    """打开数据库并按 PRAGMA user_version 初始化/升级表结构，返回连接由调用方持有"""
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    try:
        async with conn.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
            user_version = row[0]

        if user_version == 0:
            init_sql = (_SQL_DIR / "db_init_v1.sql").read_text(encoding="utf-8")
            await conn.executescript(init_sql)
            await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            logger.info(f"数据库已初始化: path={db_path}, version={SCHEMA_VERSION}")

        # 数据库升级逻辑可以在这里继续添加
        await conn.commit()
    except Exception:
        await conn.close()
        raise
    return conn


__all__ = ["open_db", "SCHEMA_VERSION"]
