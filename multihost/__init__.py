"""
multihost：单进程多前端宿主。一个 HTTP 监听按域名把请求分给配置中的各个应用，
托管各自的单页应用入口，并把 API 交给各应用动态加载的后端模块。
"""
__version__ = "1.0.0"
