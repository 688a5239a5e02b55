import aiosqlite


async def get_meta(conn: aiosqlite.Connection, key: str) -> str | None:
    async with conn.execute("SELECT meta_value FROM app_meta WHERE meta_key = ?", (key,)) as cursor:
        row = await cursor.fetchone()
    return row[0] if row else None


async def set_meta(conn: aiosqlite.Connection, key: str, value: str) -> None:
    await conn.execute(
        "INSERT INTO app_meta (meta_key, meta_value) VALUES (?, ?) "
        "ON CONFLICT(meta_key) DO UPDATE SET meta_value = excluded.meta_value",
        (key, value),
    )
    await conn.commit()


__all__ = ["get_meta", "set_meta"]
