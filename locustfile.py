from locust import HttpUser, task, between


class PublicPagesUser(HttpUser):
    wait_time = between(1, 3)

    @task(3)
    def load_home(self):
        self.client.get("/")

    @task(2)
    def load_client_login(self):
        self.client.get("/auth/client-login")

    @task(1)
    def load_register(self):
        self.client.get("/auth/client-register")

    @task(1)
    def health(self):
        self.client.get("/health")
