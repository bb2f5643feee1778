"""
Tests for the image upload endpoint and static serving of uploads.
"""

import io
import os

import pytest

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def staff(client, admin, login):
    login(admin)
    return admin


def upload(client, data, filename="cake.png", content_type="image/png"):
    return client.post(
        "/api/uploads/image",
        data={"image": (io.BytesIO(data), filename, content_type)},
        content_type="multipart/form-data",
    )


class TestUploads:
    def test_upload_and_fetch(self, app, client, staff):
        response = upload(client, PNG_BYTES, filename="../../Birthday Cake.png")
        assert response.status_code == 201
        image_url = response.get_json()["imageUrl"]
        assert image_url.startswith("/uploads/")
        assert image_url.endswith("-Birthday_Cake.png")

        stored = os.listdir(app.config["UPLOAD_FOLDER"])
        assert len(stored) == 1

        fetched = client.get(image_url)
        assert fetched.status_code == 200
        assert fetched.data == PNG_BYTES
        fetched.close()

    def test_non_image_is_rejected(self, client, staff):
        response = upload(client, b"hello", filename="notes.txt", content_type="text/plain")
        assert response.status_code == 400
        assert response.get_json()["message"] == "Only image files are allowed"

    def test_missing_file(self, client, staff):
        response = client.post("/api/uploads/image", data={"note": "no file"}, content_type="multipart/form-data")
        assert response.status_code == 400
        assert response.get_json()["message"] == "Image file is required"

    def test_oversized_image(self, app, client, staff):
        app.config["MAX_UPLOAD_BYTES"] = 16
        response = upload(client, PNG_BYTES)
        assert response.status_code == 400
        assert os.listdir(app.config["UPLOAD_FOLDER"]) == []

    def test_customer_cannot_upload(self, client, customer, login):
        login(customer)
        assert upload(client, PNG_BYTES).status_code == 403

    def test_unknown_file(self, client):
        assert client.get("/uploads/missing.png").status_code == 404
