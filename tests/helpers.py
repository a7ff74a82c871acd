from app.routers.auth import create_access_token


def fake_uploader(raw_bytes, filename, folder="reports"):
    return {
        "url": f"https://cdn.test/{folder}/{filename}",
        "width": 640,
        "height": 480,
        "size": len(raw_bytes),
    }


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.public_id)}"}
