import pytest

from hospital_scheduling.core.config import settings
from hospital_scheduling.core.security import ACCESS_TOKEN, UserRole, read_token
from hospital_scheduling.models.user import User

# Test data
test_user_data = {
    "email": "test@example.com",
    "password": "TestPassword123",
    "role": "patient",
    "full_name": "Test User"
}

test_login_data = {
    "email": "test@example.com",
    "password": "TestPassword123"
}

class TestAuthentication:

    def test_register_user(self, client):
        """Test user registration."""
        response = client.post("/api/v1/auth/register", json=test_user_data)
        assert response.status_code == 200

        data = response.json()
        assert data["email"] == test_user_data["email"]
        assert data["role"] == test_user_data["role"]
        assert data["full_name"] == "Test User"
        assert "password" not in data
        assert "password_hash" not in data

    def test_register_duplicate_email(self, client):
        """Test registration with duplicate email."""
        client.post("/api/v1/auth/register", json=test_user_data)

        response = client.post("/api/v1/auth/register", json=test_user_data)
        assert response.status_code == 400
        assert response.json()["error"] == "email_taken"
        assert "already registered" in response.json()["message"]

    def test_register_invalid_password(self, client):
        """Test registration with invalid password."""
        invalid_data = test_user_data.copy()
        invalid_data["password"] = "weak"

        response = client.post("/api/v1/auth/register", json=invalid_data)
        assert response.status_code == 422

    def test_register_password_without_digit(self, client):
        """Passwords need at least one digit."""
        invalid_data = test_user_data.copy()
        invalid_data["password"] = "NoDigitsHere"

        response = client.post("/api/v1/auth/register", json=invalid_data)
        assert response.status_code == 422

    def test_login_success(self, client):
        """Test successful login."""
        client.post("/api/v1/auth/register", json=test_user_data)

        response = client.post("/api/v1/auth/login", json=test_login_data)
        assert response.status_code == 200

        data = response.json()
        assert "access_token" in data
        assert "refresh_token" in data
        assert data["token_type"] == "bearer"
        assert data["user"]["email"] == test_user_data["email"]

    def test_login_invalid_credentials(self, client):
        """Test login with invalid credentials."""
        invalid_login = {
            "email": "nonexistent@example.com",
            "password": "wrongpassword"
        }

        response = client.post("/api/v1/auth/login", json=invalid_login)
        assert response.status_code == 401

    def test_login_wrong_password(self, client):
        """Test login with wrong password."""
        client.post("/api/v1/auth/register", json=test_user_data)

        wrong_login = test_login_data.copy()
        wrong_login["password"] = "wrongpassword"

        response = client.post("/api/v1/auth/login", json=wrong_login)
        assert response.status_code == 401

    def test_account_locks_after_repeated_failures(self, client):
        """Five wrong passwords lock the account even for the right one."""
        client.post("/api/v1/auth/register", json=test_user_data)

        wrong_login = test_login_data.copy()
        wrong_login["password"] = "wrongpassword"
        for _ in range(5):
            client.post("/api/v1/auth/login", json=wrong_login)

        response = client.post("/api/v1/auth/login", json=test_login_data)
        assert response.status_code == 423
        assert response.json()["error"] == "account_locked"

    def test_get_current_user(self, client):
        """Test getting current user info."""
        client.post("/api/v1/auth/register", json=test_user_data)
        login_response = client.post("/api/v1/auth/login", json=test_login_data)

        token = login_response.json()["access_token"]
        headers = {"Authorization": f"Bearer {token}"}

        response = client.get("/api/v1/auth/me", headers=headers)
        assert response.status_code == 200

        data = response.json()
        assert data["email"] == test_user_data["email"]

    def test_get_current_user_invalid_token(self, client):
        """Test get current user with invalid token."""
        headers = {"Authorization": "Bearer invalid_token"}

        response = client.get("/api/v1/auth/me", headers=headers)
        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_refresh_token_cannot_authenticate_requests(self, client):
        """Only access tokens are accepted as bearer credentials."""
        client.post("/api/v1/auth/register", json=test_user_data)
        login_response = client.post("/api/v1/auth/login", json=test_login_data)

        refresh_token = login_response.json()["refresh_token"]
        response = client.get(
            "/api/v1/auth/me",
            headers={"Authorization": f"Bearer {refresh_token}"}
        )
        assert response.status_code == 401

    def test_refresh_token(self, client):
        """Test token refresh."""
        client.post("/api/v1/auth/register", json=test_user_data)
        login_response = client.post("/api/v1/auth/login", json=test_login_data)

        refresh_token = login_response.json()["refresh_token"]

        response = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": refresh_token}
        )
        assert response.status_code == 200

        data = response.json()
        assert "access_token" in data
        assert "refresh_token" in data

    def test_refresh_invalid_token(self, client):
        """Test refresh with invalid token."""
        response = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": "invalid_token"}
        )
        assert response.status_code == 401

    def test_rate_limit(self, client, monkeypatch):
        """Registration is throttled per client address."""
        monkeypatch.setattr(settings, "RATE_LIMIT_REQUESTS", 2)

        for i in range(2):
            data = dict(test_user_data, email=f"user{i}@example.com")
            assert client.post("/api/v1/auth/register", json=data).status_code == 200

        data = dict(test_user_data, email="user3@example.com")
        response = client.post("/api/v1/auth/register", json=data)
        assert response.status_code == 429
        assert response.json()["error"] == "rate_limited"

    def test_access_token_cannot_refresh(self, client):
        """Only refresh tokens can be traded for a new pair."""
        client.post("/api/v1/auth/register", json=test_user_data)
        access_token = client.post("/api/v1/auth/login", json=test_login_data).json()["access_token"]

        response = client.post("/api/v1/auth/refresh", json={"refresh_token": access_token})
        assert response.status_code == 401

    def test_refresh_rejected_for_deactivated_user(self, client, db):
        """Refreshing re-reads the account, so a deactivated user is turned away."""
        client.post("/api/v1/auth/register", json=test_user_data)
        refresh_token = client.post("/api/v1/auth/login", json=test_login_data).json()["refresh_token"]

        user = db.query(User).filter(User.email == test_user_data["email"]).first()
        user.is_active = False
        db.commit()

        response = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})
        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"

    def test_token_carries_id_and_role(self, client):
        client.post("/api/v1/auth/register", json=dict(test_user_data, role="doctor"))
        data = client.post("/api/v1/auth/login", json=test_login_data).json()

        claims = read_token(data["access_token"], ACCESS_TOKEN)
        assert claims.sub == data["user"]["id"]
        assert claims.role == UserRole.DOCTOR


if __name__ == "__main__":
    pytest.main([__file__])
